"""Routing tier resolution.

Maps a request (query text, channel, cron/subagent origin) to a routing tier.
Each tier names an ordered list of escalation candidates in
``RoutingConfig.tiers``; the ProviderManager puts them right after the primary
provider in the attempt order.
"""

import re
from typing import Any, Optional

from ..constants import (
    TIER_BACKGROUND,
    TIER_BACKGROUND_IMPORTANT,
    TIER_FAST,
    TIER_MAINTENANCE,
    TIER_QUALITY,
)

FAST_MAX_CHARS = 160
"""Short queries without a quality hint are served by the fast tier."""

_QUALITY_HINT_RE = re.compile(
    r"\bdebug\b|\bdiagnose\b|\binvestigate\b|\broot cause\b|\brefactor\b|\bimplement\b"
    r"|\barchitecture\b|\bdesign\b|\boptimi[sz]e\b|\btest\b|\bbenchmark\b|\bperformance\b"
    r"|\bsecurity\b|\bfix\b",
    re.IGNORECASE,
)

_MAINTENANCE_HINT_RE = re.compile(
    r"\bhealth check\b|\bstartup health\b|\bmaintenance\b|\bself[- ]heal(?:ing)?\b"
    r"|\bincident\b|\bpostmortem\b|\bprovider\b|\bfailover\b|\bcircuit breaker\b|\berror\b",
    re.IGNORECASE,
)


def resolve_tier_for_intent(
    query: str,
    channel: str,
    is_subagent: bool = False,
    cron_context: Optional[Any] = None,
) -> str:
    """Pick the routing tier for a request.

    Rules, first match wins:
      - scheduled (cron) runs -> background
      - subagents -> maintenance on a maintenance hint, else background_important
      - maintenance hint -> quality
      - short text without a quality hint -> fast
      - quality hint -> quality
      - whatsapp -> fast
      - otherwise quality
    """
    text = (query or "").strip()

    if cron_context:
        return TIER_BACKGROUND

    if is_subagent:
        if text and _MAINTENANCE_HINT_RE.search(text):
            return TIER_MAINTENANCE
        return TIER_BACKGROUND_IMPORTANT

    if text and _MAINTENANCE_HINT_RE.search(text):
        return TIER_QUALITY

    quality = bool(_QUALITY_HINT_RE.search(text))
    if len(text) <= FAST_MAX_CHARS and not quality:
        return TIER_FAST
    if quality:
        return TIER_QUALITY
    if channel == "whatsapp":
        return TIER_FAST
    return TIER_QUALITY
