"""Tests for antcore.agent.telemetry and the run models"""

import json
import logging

from antcore.agent.models import AgentOutput, RunState, ToolPart, ToolPartState
from antcore.agent.telemetry import RunTelemetry
from antcore.llm.providers import ProviderHealthEvent


class TestRunTelemetry:

    def test_logs_json_line(self, caplog):
        telemetry = RunTelemetry()
        with caplog.at_level(logging.INFO, logger="antcore.telemetry"):
            telemetry.run_start("r1", "cli:1", "cli", "fast")

        record = next(r for r in caplog.records if r.name == "antcore.telemetry")
        entry = json.loads(record.getMessage())
        assert entry["event_type"] == "run_start"
        assert entry["run_id"] == "r1"
        assert entry["tier"] == "fast"
        assert "timestamp" in entry

    def test_listeners_receive_entries(self):
        telemetry = RunTelemetry()
        seen = []
        telemetry.add_listener(seen.append)
        telemetry.compaction("r1", "reactive", 900, 400)

        assert seen[0]["event_type"] == "compaction"
        assert seen[0]["tokens_before"] == 900
        assert seen[0]["tokens_after"] == 400

    def test_failing_listener_is_isolated(self):
        telemetry = RunTelemetry()
        seen = []

        def broken(entry):
            raise RuntimeError("nope")

        telemetry.add_listener(broken)
        telemetry.add_listener(seen.append)
        telemetry.iteration("r1", 1, "p1", ["add"])
        assert seen[0]["tool_calls_count"] == 1

    def test_remove_listener(self):
        telemetry = RunTelemetry()
        seen = []
        telemetry.add_listener(seen.append)
        telemetry.remove_listener(seen.append)
        telemetry.run_end("r1", "success", 1, [], 5)
        assert seen == []

    def test_run_end_error_only_when_set(self):
        telemetry = RunTelemetry()
        seen = []
        telemetry.add_listener(seen.append)
        telemetry.run_end("r1", "success", 1, [], 5)
        telemetry.run_end("r2", "error", 1, [], 5, error="boom")
        assert "error" not in seen[0]
        assert seen[1]["error"] == "boom"

    def test_provider_health_event(self):
        telemetry = RunTelemetry()
        seen = []
        telemetry.add_listener(seen.append)
        telemetry.provider_health(ProviderHealthEvent("cooldown_started", "p1", "rate_limit", 60.0))
        assert seen[0]["provider_id"] == "p1"
        assert seen[0]["reason"] == "rate_limit"


class TestRunModels:

    def test_terminal_states(self):
        assert RunState.SUCCESS.is_terminal
        assert RunState.MAX_ITERATIONS.is_terminal
        assert RunState.ERROR.is_terminal
        assert not RunState.ITERATING.is_terminal

    def test_tool_part_lifecycle(self):
        part = ToolPart(id="r1:c1", call_id="c1", tool="add", input={"a": 1})
        assert part.state == ToolPartState.PENDING
        assert part.duration_ms is None

        part.start()
        assert part.state == ToolPartState.RUNNING
        part.complete(2, {"duration_ms": 3})

        data = part.to_dict()
        assert data["state"] == "completed"
        assert data["output"] == 2
        assert data["metadata"] == {"duration_ms": 3}
        assert data["duration_ms"] is not None

    def test_tool_part_failure(self):
        part = ToolPart(id="r1:c1", call_id="c1", tool="add")
        part.start()
        part.fail("bad input")
        assert part.state == ToolPartState.ERROR
        assert part.error == "bad input"

    def test_agent_output(self):
        ok = AgentOutput(response="hi", run_id="r1")
        failed = AgentOutput(response="sorry", run_id="r2", error="boom")
        assert ok.ok
        assert not failed.ok
        assert failed.to_dict()["error"] == "boom"
