"""Pydantic request/response models for the antcore HTTP bridge."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class RpcRequest(BaseModel):
    """Method envelope: the same call shape as the in-process API."""
    method: str
    params: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class RpcError(BaseModel):
    code: str
    message: str


class RpcResponse(BaseModel):
    id: Optional[str] = None
    ok: bool
    result: Optional[Any] = None
    error: Optional[RpcError] = None


class CronParams(BaseModel):
    """Scheduled-job context; mirrors ``antcore.agent.models.CronContext``."""
    job_id: str
    job_name: str = ""
    schedule: str = ""
    triggered_at: Optional[float] = None


class ExecuteParams(BaseModel):
    """Params of ``agent.execute``.

    ``tool_policy`` is either the name of a configured policy or an inline
    policy mapping (snake_case or camelCase keys).
    """
    session_key: str
    query: str
    channel: str = "web"
    chat_id: Optional[str] = None
    history: List[Dict[str, Any]] = Field(default_factory=list)
    is_subagent: bool = False
    cron_context: Optional[CronParams] = None
    tool_policy: Optional[Union[str, Dict[str, List[str]]]] = None
    run_id: Optional[str] = None
