"""
antcore Application - wires providers, tools, engine and router from one config.

Usage:
    from antcore import AntCore

    async with AntCore("antcore.yaml", tools=[read_file, run_shell]) as core:
        output = await core.execute("What changed in the last commit?", session_key="cli:1")
        print(output.response)

    # Behind channel adapters
    core = AntCore("antcore.yaml")
    core.router.register_adapter(my_adapter)
    await core.initialize()
"""

import logging
from typing import Any, Callable, Dict, Iterable, Optional, Union

from .agent.engine import AgentEngine
from .agent.models import AgentInput, AgentOutput
from .agent.telemetry import RunTelemetry
from .channels.models import MessageContext, NormalizedMessage
from .channels.router import AGENT_SENDER, MessageRouter
from .config import AntCoreConfig, ProviderConfig, load_config
from .llm.providers import ProviderManager
from .protocols import LLMClientProtocol, ToolResultSinkProtocol
from .tools.models import Tool
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class AntCore:
    """
    Application entry point.

    The constructor only builds objects; ``initialize()`` creates provider
    clients and starts the router. Use as an async context manager to get
    both ``initialize()`` and ``shutdown()``.

    Args:
        config: Path to a YAML file, a parsed mapping, or an AntCoreConfig
        tools: Tools registered in the default ToolRegistry
        client_factory: Builds a model client per provider (litellm by default)
        tool_result_sink: Async callback receiving every tool result
    """

    def __init__(
        self,
        config: Union[str, Dict[str, Any], AntCoreConfig],
        tools: Optional[Iterable[Tool]] = None,
        client_factory: Optional[Callable[[ProviderConfig], LLMClientProtocol]] = None,
        tool_result_sink: Optional[ToolResultSinkProtocol] = None,
    ):
        if isinstance(config, AntCoreConfig):
            self.config = config
        elif isinstance(config, str):
            self.config = AntCoreConfig.from_dict(load_config(config))
        else:
            self.config = AntCoreConfig.from_dict(config)

        if not self.config.providers:
            raise ValueError("Missing required config field: 'providers'")

        self.telemetry = RunTelemetry()
        self.providers = ProviderManager(
            self.config.providers,
            routing=self.config.routing,
            cooldown=self.config.cooldown,
            client_factory=client_factory,
        )
        self.providers.add_listener(self.telemetry.provider_health)
        self.tools = ToolRegistry(tools)
        self.engine = AgentEngine(
            self.config.engine,
            providers=self.providers,
            tools=self.tools,
            retry=self.config.retry,
            tool_policies=self.config.tool_policies,
            telemetry=self.telemetry,
            tool_result_sink=tool_result_sink,
        )
        self.router = MessageRouter(self.config.router, default_handler=self.handle_message)
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.providers.initialize()
        await self.tools.initialize()
        await self.router.start()
        self._initialized = True
        logger.info(
            f"antcore initialized: {len(self.providers.providers)} providers, {self.tools.count} tools"
        )

    async def shutdown(self) -> None:
        """Stop the router, then release tools and provider clients."""
        if not self._initialized:
            return
        try:
            await self.router.stop()
            await self.tools.shutdown()
            await self.providers.shutdown()
        finally:
            self._initialized = False
            logger.info("antcore shut down")

    async def __aenter__(self) -> "AntCore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(
        self,
        query: Union[str, AgentInput],
        session_key: str = "cli:default",
        channel: str = "cli",
        **kwargs: Any,
    ) -> AgentOutput:
        """Run the agent on a query (or a prepared AgentInput)."""
        await self.initialize()
        if isinstance(query, AgentInput):
            agent_input = query
        else:
            agent_input = AgentInput(session_key=session_key, query=query, channel=channel, **kwargs)
        return await self.engine.execute(agent_input)

    async def handle_message(self, message: NormalizedMessage) -> Optional[NormalizedMessage]:
        """Default router handler: run the engine and reply on the message's channel."""
        output = await self.engine.execute(AgentInput(
            session_key=message.session_key,
            query=message.content,
            channel=message.channel,
            chat_id=message.context.chat_id,
        ))
        reply = NormalizedMessage(
            channel=message.channel,
            sender=AGENT_SENDER,
            content=output.response,
            context=MessageContext(
                session_key=message.session_key,
                chat_id=message.context.chat_id,
                thread_id=message.context.thread_id,
            ),
            is_reply=True,
            metadata={"run_id": output.run_id, "reply_to": message.id, "error": output.error},
        )
        if not await self.router.send_message(reply):
            logger.warning(f"Reply for run {output.run_id} was not delivered on {message.channel}")
        return reply

    def stats(self) -> Dict[str, Any]:
        return {
            "queues": self.router.get_queue_stats(),
            "sessions": len(self.router.get_sessions()),
        }
