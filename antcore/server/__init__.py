"""antcore HTTP bridge (FastAPI)."""

from .app import METHODS, create_app
from .main import main
from .models import ExecuteParams, RpcError, RpcRequest, RpcResponse

__all__ = ["METHODS", "create_app", "main", "ExecuteParams", "RpcError", "RpcRequest", "RpcResponse"]
