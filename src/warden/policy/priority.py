"""
Priority compilation.

Each rule declares a priority local to its source. Compiling maps it into
a single ordered space segmented by trust tier:

    compiled = tier + declared / 1000

With 0 <= declared < 1000 every compiled priority of a tier lies in
[tier, tier + 1), so an ADMIN rule always outranks a USER rule, which
always outranks a DEFAULT rule. USER sources are further limited to
declared < 950 so that their rules stay below interactive approvals.
Declared values outside the range are rejected rather than clamped.

Fixed priorities used by the settings synthesizer (all USER tier):

    85   MCP servers in mcp.allowed
    90   MCP servers with trust: true
    100  tools in tools.allowed
    195  MCP servers in mcp.excluded
    200  tools in tools.exclude

Interactive "always allow" approvals land at the absolute priority 2.95:
above every other USER rule, below every ADMIN rule.
"""

import math

from warden.errors import PriorityOutOfRangeError
from warden.schema import TrustTier

MAX_DECLARED_PRIORITY = 1000
PRIORITY_SCALE = 1000

MCP_ALLOWED_PRIORITY = 85
MCP_TRUSTED_PRIORITY = 90
TOOL_ALLOWED_PRIORITY = 100
MCP_EXCLUDED_PRIORITY = 195
TOOL_EXCLUDED_PRIORITY = 200

INTERACTIVE_ALLOW_PRIORITY = 2.95

# USER rules declare below this so that interactive approvals outrank them.
MAX_USER_DECLARED_PRIORITY = 950


def declared_priority_limit(tier: TrustTier | None = None) -> float:
    """Exclusive upper bound on declared priorities for a tier."""
    if tier is TrustTier.USER:
        return MAX_USER_DECLARED_PRIORITY
    return MAX_DECLARED_PRIORITY


def _tier_ceiling(tier: TrustTier) -> float:
    if tier is TrustTier.USER:
        return INTERACTIVE_ALLOW_PRIORITY
    return int(tier) + 1


def validate_declared_priority(declared: float, tier: TrustTier | None = None) -> None:
    """
    Check that a declared priority keeps its rule inside its tier band.

    Args:
        declared: Priority as written in the rule source
        tier: Tier of the source; USER sources have a lower limit

    Raises:
        PriorityOutOfRangeError: If declared is not finite or not in
            [0, declared_priority_limit(tier))
    """
    limit = declared_priority_limit(tier)
    if not math.isfinite(declared) or not 0 <= declared < limit:
        raise PriorityOutOfRangeError(priority=declared, limit=limit)


def compile_priority(declared: float, tier: TrustTier) -> float:
    """
    Map a declared priority into the global ordering.

    Args:
        declared: Priority as written in the rule source
        tier: Trust tier of the rule source

    Returns:
        tier + declared / 1000

    Raises:
        PriorityOutOfRangeError: If declared would escape its tier band, or
            for USER sources, reach the interactive approval priority
    """
    validate_declared_priority(declared, tier)
    compiled = int(tier) + declared / PRIORITY_SCALE
    # Float rounding can push a value just below the limit onto the ceiling.
    if compiled >= _tier_ceiling(tier):
        raise PriorityOutOfRangeError(priority=declared, limit=declared_priority_limit(tier))
    return compiled


def tier_of(compiled: float) -> TrustTier | None:
    """Recover the tier band a compiled priority lies in, if any."""
    try:
        return TrustTier(math.floor(compiled))
    except ValueError:
        return None
