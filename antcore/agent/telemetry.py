"""
Structured run telemetry.

Produces one JSON log line per event on the ``antcore.telemetry`` logger and
fans the same entry out to registered listeners. Each entry carries a
timestamp, the event type and the run id when known.

Usage::

    telemetry = RunTelemetry()
    telemetry.add_listener(lambda entry: print(entry["event_type"]))
    telemetry.run_start(run_id="r1", session_key="cli:1", channel="cli", tier="fast")
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

_telemetry_logger = logging.getLogger("antcore.telemetry")
logger = logging.getLogger(__name__)

TelemetryListener = Callable[[Dict[str, Any]], Any]


class RunTelemetry:
    """Structured logger for agent run lifecycle events."""

    def __init__(self) -> None:
        self._listeners: List[TelemetryListener] = []

    def add_listener(self, listener: TelemetryListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TelemetryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def emit(self, event_type: str, fields: Dict[str, Any]) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
        }
        entry.update(fields)
        _telemetry_logger.info(json.dumps(entry, default=str))
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:
                logger.warning(f"Telemetry listener failed on {event_type}: {e}")

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def run_start(self, run_id: str, session_key: str, channel: str, tier: Optional[str]) -> None:
        self.emit("run_start", {
            "run_id": run_id,
            "session_key": session_key,
            "channel": channel,
            "tier": tier,
        })

    def provider_selected(self, run_id: str, role: str, provider_id: str, model: Optional[str]) -> None:
        self.emit("provider_selected", {
            "run_id": run_id,
            "role": role,
            "provider_id": provider_id,
            "model": model,
        })

    def iteration(self, run_id: str, iteration: int, provider_id: str, tool_calls: List[str]) -> None:
        """Log one provider round of the tool loop."""
        self.emit("iteration", {
            "run_id": run_id,
            "iteration": iteration,
            "provider_id": provider_id,
            "tool_calls": tool_calls,
            "tool_calls_count": len(tool_calls),
        })

    def tool_start(self, run_id: str, part: Dict[str, Any]) -> None:
        self.emit("tool_start", {"run_id": run_id, "part": part})

    def tool_end(self, run_id: str, part: Dict[str, Any]) -> None:
        self.emit("tool_end", {"run_id": run_id, "part": part})

    def compaction(self, run_id: str, tier: str, tokens_before: int, tokens_after: int) -> None:
        self.emit("compaction", {
            "run_id": run_id,
            "tier": tier,
            "tokens_before": tokens_before,
            "tokens_after": tokens_after,
        })

    def provider_health(self, event: Any) -> None:
        """Forward a ProviderManager health event."""
        self.emit("provider_health", {
            "type": getattr(event, "type", None),
            "provider_id": getattr(event, "provider_id", None),
            "reason": getattr(event, "reason", None),
            "cooldown_seconds": getattr(event, "cooldown_seconds", None),
        })

    def run_end(
        self,
        run_id: str,
        outcome: str,
        iterations: int,
        tools_used: List[str],
        duration_ms: int,
        error: Optional[str] = None,
    ) -> None:
        fields: Dict[str, Any] = {
            "run_id": run_id,
            "outcome": outcome,
            "iterations": iterations,
            "tools_used": tools_used,
            "duration_ms": duration_ms,
        }
        if error is not None:
            fields["error"] = error
        self.emit("run_end", fields)
