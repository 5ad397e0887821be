"""
antcore error taxonomy

Every error raised by the execution core derives from AntCoreError so callers
can catch the whole family at once. Timeout variants also derive from the
builtin TimeoutError.
"""

from typing import Any, List, Optional

PROVIDER_FAILURE_REASONS = ("rate_limit", "billing", "auth", "format", "unknown")
"""Classified provider failure reasons, in classification order."""

FATAL_FAILURE_REASONS = frozenset({"auth", "billing", "format"})
"""Reasons that skip local retry and escalate to the next candidate."""


class AntCoreError(Exception):
    """Base class for antcore errors"""
    pass


class ProviderError(AntCoreError):
    """
    A language-model backend call failed.

    Attributes:
        reason: One of rate_limit, billing, auth, format, unknown
        provider_id: Provider that produced the failure (if known)
        status_code: HTTP status code extracted from the cause (if any)
        attempts: Attempt records collected by the failover loop
    """

    def __init__(
        self,
        message: str,
        reason: str = "unknown",
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
        attempts: Optional[List[Any]] = None,
    ):
        super().__init__(message)
        self.reason = reason if reason in PROVIDER_FAILURE_REASONS else "unknown"
        self.provider_id = provider_id
        self.status_code = status_code
        self.attempts = attempts or []

    @property
    def fatal(self) -> bool:
        """Whether this failure should skip local retry."""
        return self.reason in FATAL_FAILURE_REASONS


class NoProviderAvailable(ProviderError):
    """Raised when no provider qualifies for a role/tier (all missing or cooling down)."""

    def __init__(self, message: str, role: Optional[str] = None):
        super().__init__(message, reason="unknown")
        self.role = role


class ProviderTimeoutError(ProviderError, TimeoutError):
    """A provider call did not finish before its deadline."""

    def __init__(self, provider_id: Optional[str], timeout: float):
        super().__init__(
            f"Provider call timed out after {timeout:g}s",
            reason="unknown",
            provider_id=provider_id,
        )
        self.timeout = timeout


class ToolExecutionError(AntCoreError):
    """A tool raised while executing. Always converted into a failure ToolResult."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolTimeoutError(ToolExecutionError, TimeoutError):
    """A tool did not finish before its deadline."""

    def __init__(self, tool_name: str, timeout: float):
        super().__init__(tool_name, f"timed out after {timeout:g}s")
        self.timeout = timeout


class ToolPolicyDenied(AntCoreError):
    """A tool was called repeatedly although the run's policy does not allow it."""

    def __init__(self, tool_name: str, denials: int):
        super().__init__(f"Tool blocked by policy: {tool_name} (denied {denials} times)")
        self.tool_name = tool_name
        self.denials = denials


class ContextOverflow(AntCoreError):
    """The message history cannot be shrunk under the token budget."""

    def __init__(self, estimated_tokens: int, budget: int):
        super().__init__(
            f"Context overflow: history estimated at {estimated_tokens} tokens "
            f"exceeds budget of {budget}"
        )
        self.estimated_tokens = estimated_tokens
        self.budget = budget


class MaxIterationsReached(AntCoreError):
    """The tool loop hit its iteration bound without producing a final answer."""

    def __init__(self, iterations: int):
        super().__init__("Max iterations reached")
        self.iterations = iterations
