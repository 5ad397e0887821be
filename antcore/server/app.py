"""FastAPI app exposing the engine, router and provider health by method name."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from fastapi import FastAPI
from pydantic import ValidationError

from ..agent.models import AgentInput, CronContext
from ..app import AntCore
from ..tools.policy import ToolPolicy
from .models import ExecuteParams, RpcError, RpcRequest, RpcResponse

logger = logging.getLogger(__name__)

MethodHandler = Callable[[AntCore, Dict[str, Any]], Awaitable[Any]]


class InvalidParams(ValueError):
    """Params passed validation but name something that does not exist."""


def _resolve_policy(core: AntCore, policy: Union[str, Dict[str, Any], None]) -> Optional[ToolPolicy]:
    if policy is None:
        return None
    if isinstance(policy, str):
        if policy not in core.config.tool_policies:
            raise InvalidParams(f"Unknown tool policy: {policy}")
        return core.config.tool_policies[policy]
    return ToolPolicy.from_dict(policy)


async def _agent_execute(core: AntCore, params: Dict[str, Any]) -> Dict[str, Any]:
    req = ExecuteParams(**params)
    output = await core.execute(AgentInput(
        session_key=req.session_key,
        query=req.query,
        channel=req.channel,
        chat_id=req.chat_id,
        history=req.history,
        is_subagent=req.is_subagent,
        cron_context=CronContext(**req.cron_context.model_dump()) if req.cron_context else None,
        tool_policy=_resolve_policy(core, req.tool_policy),
        run_id=req.run_id,
    ))
    return output.to_dict()


async def _router_stats(core: AntCore, params: Dict[str, Any]) -> Dict[str, Any]:
    return core.stats()


async def _providers_health(core: AntCore, params: Dict[str, Any]) -> Dict[str, Any]:
    health = core.providers.health()
    if params.get("probe"):
        for provider_id in health:
            health[provider_id]["reachable"] = await core.providers.check_provider(provider_id)
    return health


METHODS: Dict[str, MethodHandler] = {
    "agent.execute": _agent_execute,
    "router.stats": _router_stats,
    "providers.health": _providers_health,
}


def create_app(core: AntCore) -> FastAPI:
    """Build the HTTP bridge around an AntCore instance.

    The app's lifespan runs ``core.initialize()`` and ``core.shutdown()``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await core.initialize()
        try:
            yield
        finally:
            await core.shutdown()

    api = FastAPI(title="antcore", lifespan=lifespan)

    @api.get("/health")
    async def health():
        return {"status": "ok", "providers": len(core.providers.providers), "tools": core.tools.count}

    @api.post("/rpc", response_model=RpcResponse)
    async def rpc(req: RpcRequest) -> RpcResponse:
        handler = METHODS.get(req.method)
        if handler is None:
            return RpcResponse(
                id=req.id, ok=False,
                error=RpcError(code="method_not_found", message=f"Unknown method: {req.method}"),
            )
        try:
            result = await handler(core, req.params)
        except (ValidationError, InvalidParams) as e:
            return RpcResponse(id=req.id, ok=False, error=RpcError(code="invalid_params", message=str(e)))
        except Exception as e:
            logger.exception(f"RPC {req.method} failed: {e}")
            return RpcResponse(id=req.id, ok=False, error=RpcError(code="internal_error", message=str(e)))
        return RpcResponse(id=req.id, ok=True, result=result)

    return api
