"""
antcore ProviderManager - model backends, health and cooldown tracking

Tracks the configured model backends and their live health. Each provider
has a cooldown state machine::

    closed --failure--> open(until ts) --success--> closed

A failure is classified into a reason (rate_limit, billing, auth, format,
unknown). The reason picks the base cooldown and consecutive failures grow
it exponentially up to a cap. A success on an open provider closes it and
emits a ``recovered`` health event.

Usage:
    manager = ProviderManager(config.providers, routing=config.routing)
    await manager.initialize()

    primary = manager.select_best_provider("tools", tier="quality", require_tools=True)
    attempt_ids = manager.get_prioritized_provider_ids(primary.id, tier="quality")

    await manager.shutdown()
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import httpx

from ..config import CooldownConfig, ProviderConfig, RoutingConfig
from ..constants import ROLE_CHAT, ROLE_PARENT_FOR_CLI, ROLE_TOOLS
from ..errors import FATAL_FAILURE_REASONS, NoProviderAvailable, ProviderError
from ..protocols import LLMClientProtocol
from .litellm_client import LiteLLMClient

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ProviderHealth:
    """Live health of one provider."""
    cooldown_until: Optional[float] = None  # clock() timestamp; None means closed
    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_reason: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cooldown_until": self.cooldown_until,
            "consecutive_failures": self.consecutive_failures,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
            "last_reason": self.last_reason,
            "last_error": self.last_error,
        }


@dataclass
class Provider:
    """A model backend reachable for chat and/or tool calling."""
    id: str
    model: str
    client: LLMClientProtocol
    roles: Set[str] = field(default_factory=lambda: {ROLE_CHAT, ROLE_TOOLS})
    supports_tools: bool = True
    context_window: Optional[int] = None
    group: str = "configured"   # configured | local | discovered
    base_url: Optional[str] = None
    health: ProviderHealth = field(default_factory=ProviderHealth)


@dataclass
class FailureRecord:
    """Outcome of ``ProviderManager.record_failure``."""
    provider_id: str
    reason: str
    cooldown_seconds: float
    cooldown_until: float
    consecutive_failures: int

    @property
    def fatal(self) -> bool:
        return self.reason in FATAL_FAILURE_REASONS


@dataclass
class ProviderHealthEvent:
    """Emitted to listeners when a provider enters cooldown or recovers."""
    type: str               # "cooldown_started" | "recovered"
    provider_id: str
    reason: Optional[str] = None
    cooldown_seconds: float = 0.0


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

_RATE_LIMIT_PATTERNS = ("rate limit", "rate_limit", "ratelimit", "429", "too many requests")
_AUTH_PATTERNS = ("401", "403", "invalid api key", "incorrect api key", "unauthorized",
                  "authentication", "permission denied", "forbidden")
_BILLING_PATTERNS = ("402", "payment required", "insufficient credits", "insufficient_quota",
                     "billing", "quota exceeded")
_FORMAT_PATTERNS = ("400", "422", "invalid request", "bad request", "malformed",
                    "tool_call_parse_failed")

_STATUS_REASONS = {
    429: "rate_limit",
    401: "auth",
    403: "auth",
    402: "billing",
    400: "format",
    422: "format",
}


def extract_status_code(error: BaseException) -> Optional[int]:
    """Try to pull an HTTP status code out of the exception."""
    for attr in ("status_code", "code", "status"):
        val = getattr(error, attr, None)
        if isinstance(val, int) and not isinstance(val, bool):
            return val
    response = getattr(error, "response", None)
    val = getattr(response, "status_code", None)
    return val if isinstance(val, int) else None


def classify_provider_error(error: BaseException) -> str:
    """Classify an exception into rate_limit, billing, auth, format or unknown."""
    if isinstance(error, ProviderError):
        return error.reason

    status = extract_status_code(error)
    if status in _STATUS_REASONS:
        return _STATUS_REASONS[status]

    # Check both the type name and the stringified error message
    haystack = f"{type(error).__name__} {error}".lower()
    for reason, patterns in (
        ("rate_limit", _RATE_LIMIT_PATTERNS),
        ("auth", _AUTH_PATTERNS),
        ("billing", _BILLING_PATTERNS),
        ("format", _FORMAT_PATTERNS),
    ):
        if any(p in haystack for p in patterns):
            return reason
    return "unknown"


def is_retryable_error(error: BaseException) -> bool:
    """Whether a local retry on the same provider makes sense.

    auth, billing and format failures will not go away by asking again.
    """
    return classify_provider_error(error) not in FATAL_FAILURE_REASONS


def to_provider_error(error: BaseException, provider_id: Optional[str] = None) -> ProviderError:
    """Wrap any exception into a classified ProviderError."""
    if isinstance(error, ProviderError):
        if error.provider_id is None:
            error.provider_id = provider_id
        return error
    return ProviderError(
        str(error) or type(error).__name__,
        reason=classify_provider_error(error),
        provider_id=provider_id,
        status_code=extract_status_code(error),
    )


_GROUP_RANK = {"configured": 0, "local": 1, "discovered": 2}


def sort_providers_by_priority(
    providers: Iterable[Provider],
    is_cooling_down: Callable[[str], bool],
) -> List[Provider]:
    """Order: configured before local before discovered, cooling-down last,
    then fewer consecutive failures, then id."""
    return sorted(
        providers,
        key=lambda p: (
            _GROUP_RANK.get(p.group, len(_GROUP_RANK)),
            1 if is_cooling_down(p.id) else 0,
            p.health.consecutive_failures,
            p.id,
        ),
    )


def _default_client_factory(cfg: ProviderConfig) -> LLMClientProtocol:
    return LiteLLMClient.from_provider_config(cfg)


# ---------------------------------------------------------------------------
# ProviderManager
# ---------------------------------------------------------------------------

class ProviderManager:
    """
    Registry of model backends with per-provider cooldown state.

    Constructed explicitly and injected into AgentEngine. ``record_success``
    and ``record_failure`` are synchronous, so on a single event loop each
    update to the cooldown table is atomic with respect to other runs.

    Args:
        providers: Provider configs turned into clients by ``initialize()``
        routing: Role/tier routing and fallback chain
        cooldown: Cooldown durations per failure reason
        client_factory: Builds a client from a ProviderConfig (litellm by default)
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        providers: Optional[List[ProviderConfig]] = None,
        routing: Optional[RoutingConfig] = None,
        cooldown: Optional[CooldownConfig] = None,
        client_factory: Optional[Callable[[ProviderConfig], LLMClientProtocol]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._configs = list(providers or [])
        self.routing = routing or RoutingConfig()
        self.cooldown = cooldown or CooldownConfig()
        self._client_factory = client_factory or _default_client_factory
        self._clock = clock
        self._providers: Dict[str, Provider] = {}
        self._listeners: List[Callable[[ProviderHealthEvent], Any]] = []
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create clients for every configured provider."""
        if self._initialized:
            return
        for cfg in self._configs:
            if cfg.id in self._providers:
                continue
            self.register(Provider(
                id=cfg.id,
                model=cfg.model,
                client=self._client_factory(cfg),
                roles=set(cfg.roles),
                supports_tools=cfg.supports_tools,
                context_window=cfg.context_window,
                group=cfg.group,
                base_url=cfg.base_url,
            ))
        self._initialized = True
        logger.info(f"ProviderManager initialized: {sorted(self._providers)}")

    async def shutdown(self) -> None:
        """Close every provider client."""
        for provider in self._providers.values():
            close = getattr(provider.client, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Failed to close provider client {provider.id}: {e}")
        self._providers.clear()
        self._initialized = False
        logger.info("ProviderManager shut down")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, provider: Provider) -> None:
        self._providers[provider.id] = provider

    def get(self, provider_id: str) -> Provider:
        """Return a provider by id.

        Raises:
            KeyError: If no such provider is registered.
        """
        return self._providers[provider_id]

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    @property
    def providers(self) -> List[Provider]:
        return list(self._providers.values())

    def add_listener(self, callback: Callable[[ProviderHealthEvent], Any]) -> None:
        """Register a callback for cooldown/recovery events."""
        self._listeners.append(callback)

    def _emit(self, event: ProviderHealthEvent) -> None:
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Provider health listener failed: {e}")

    # ------------------------------------------------------------------
    # Cooldown state
    # ------------------------------------------------------------------

    def is_cooling_down(self, provider_id: str) -> bool:
        provider = self._providers.get(provider_id)
        if provider is None or provider.health.cooldown_until is None:
            return False
        return self._clock() < provider.health.cooldown_until

    def cooldown_remaining(self, provider_id: str) -> float:
        provider = self._providers.get(provider_id)
        if provider is None or provider.health.cooldown_until is None:
            return 0.0
        return max(provider.health.cooldown_until - self._clock(), 0.0)

    def record_failure(self, provider_id: str, error: Any) -> FailureRecord:
        """Record a failed call and open the provider's cooldown.

        Args:
            provider_id: Provider that failed
            error: The exception, or an already-classified reason string
        """
        provider = self.get(provider_id)
        reason = error if isinstance(error, str) else classify_provider_error(error)
        health = provider.health
        health.consecutive_failures += 1
        health.total_failures += 1
        health.last_reason = reason
        health.last_error = None if isinstance(error, str) else str(error)

        seconds = self.cooldown.duration(reason, health.consecutive_failures)
        health.cooldown_until = self._clock() + seconds

        logger.warning(
            "Provider %s entered cooldown for %.0fs (reason=%s, consecutive_failures=%d)",
            provider_id, seconds, reason, health.consecutive_failures,
        )
        self._emit(ProviderHealthEvent(
            type="cooldown_started",
            provider_id=provider_id,
            reason=reason,
            cooldown_seconds=seconds,
        ))
        return FailureRecord(
            provider_id=provider_id,
            reason=reason,
            cooldown_seconds=seconds,
            cooldown_until=health.cooldown_until,
            consecutive_failures=health.consecutive_failures,
        )

    def record_success(self, provider_id: str) -> bool:
        """Record a successful call. Returns True if the provider recovered."""
        health = self.get(provider_id).health
        was_open = health.cooldown_until is not None
        health.cooldown_until = None
        health.consecutive_failures = 0
        health.total_successes += 1
        if was_open:
            logger.info(f"Provider {provider_id} recovered")
            self._emit(ProviderHealthEvent(type="recovered", provider_id=provider_id))
        return was_open

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_best_provider(
        self,
        role: str,
        tier: Optional[str] = None,
        require_tools: bool = False,
    ) -> Provider:
        """
        Resolve the provider serving *role*.

        Candidates in order: the provider routed to the role, the tier
        candidates, the default provider, the fallback chain, then every
        other provider with the role ordered by health. Cooling-down
        providers (and tool-incapable ones when ``require_tools``) are skipped.

        Raises:
            NoProviderAvailable: If no provider qualifies.
        """
        configured = getattr(self.routing, role, None) if role in (
            ROLE_CHAT, ROLE_TOOLS, ROLE_PARENT_FOR_CLI
        ) else None

        ordered: List[str] = []
        if configured:
            ordered.append(configured)
        if tier:
            ordered.extend(self.routing.tiers.get(tier, []))
        if self.routing.default:
            ordered.append(self.routing.default)
        ordered.extend(self.routing.fallback_chain)
        ordered.extend(p.id for p in sort_providers_by_priority(
            self._providers.values(), self.is_cooling_down
        ))

        for provider_id in _dedupe(ordered):
            provider = self._providers.get(provider_id)
            if provider is None:
                continue
            if provider_id != configured and role not in provider.roles:
                continue
            if require_tools and not provider.supports_tools:
                continue
            if self.is_cooling_down(provider_id):
                continue
            return provider

        raise NoProviderAvailable(
            f"No provider available for role '{role}'"
            + (f" (tier={tier})" if tier else ""),
            role=role,
        )

    def get_prioritized_provider_ids(
        self,
        primary_id: str,
        tier: Optional[str] = None,
        require_tools: bool = False,
    ) -> List[str]:
        """
        Build the ordered attempt list for one call.

        Primary first, then tier escalation candidates, then the fallback
        chain. Deduplicated; unknown, cooling-down and (when required)
        tool-incapable providers are removed.
        """
        ordered = [primary_id]
        if tier:
            ordered.extend(self.routing.tiers.get(tier, []))
        ordered.extend(self.routing.fallback_chain)

        result: List[str] = []
        for provider_id in _dedupe(ordered):
            provider = self._providers.get(provider_id)
            if provider is None:
                continue
            if require_tools and not provider.supports_tools:
                continue
            if self.is_cooling_down(provider_id):
                continue
            result.append(provider_id)
        return result

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every provider's health for dashboards and the HTTP bridge."""
        return {
            p.id: {
                "model": p.model,
                "roles": sorted(p.roles),
                "supports_tools": p.supports_tools,
                "cooling_down": self.is_cooling_down(p.id),
                "cooldown_remaining": round(self.cooldown_remaining(p.id), 3),
                **p.health.to_dict(),
            }
            for p in self._providers.values()
        }

    async def check_provider(self, provider_id: str, timeout: float = 5.0) -> bool:
        """Probe an HTTP provider's ``/models`` endpoint.

        Providers without a ``base_url`` are reported healthy unless cooling down.
        """
        provider = self.get(provider_id)
        if not provider.base_url:
            return not self.is_cooling_down(provider_id)

        url = provider.base_url.rstrip("/") + "/models"
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"Health check failed for {provider_id}: {e}")
            return False
        return response.status_code < 500


def _dedupe(ids: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for provider_id in ids:
        if provider_id and provider_id not in seen:
            seen.add(provider_id)
            out.append(provider_id)
    return out
