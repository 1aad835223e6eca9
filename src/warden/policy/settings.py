"""
Rules synthesized from user settings.

Settings express policy without a rule file: tools and MCP servers the
user allowed or excluded, and MCP servers marked as trusted. Each becomes
a USER-tier rule at a fixed priority, so exclusions always outrank
inclusions:

    mcp.allowed            ALLOW  85
    mcpServers.*.trust     ALLOW  90
    tools.allowed          ALLOW 100
    mcp.excluded           DENY  195
    tools.exclude          DENY  200
"""

import logging

from warden.policy.matcher import server_wildcard
from warden.policy.priority import (
    INTERACTIVE_ALLOW_PRIORITY,
    MCP_ALLOWED_PRIORITY,
    MCP_EXCLUDED_PRIORITY,
    MCP_TRUSTED_PRIORITY,
    TOOL_ALLOWED_PRIORITY,
    TOOL_EXCLUDED_PRIORITY,
    compile_priority,
)
from warden.schema import PolicyDecision, PolicyRule, Settings, TrustTier

logger = logging.getLogger(__name__)


def _settings_rule(
    tool_name: str,
    decision: PolicyDecision,
    declared: float,
    source: str,
) -> PolicyRule:
    return PolicyRule(
        tool_name=tool_name,
        decision=decision,
        priority=compile_priority(declared, TrustTier.USER),
        source=f"settings:{source}",
    )


def rules_from_settings(settings: Settings) -> list[PolicyRule]:
    """
    Build USER-tier rules from settings.

    Args:
        settings: Parsed settings

    Returns:
        Compiled rules, in the order listed in the module docstring
    """
    rules: list[PolicyRule] = []

    for server in settings.mcp.allowed:
        rules.append(_settings_rule(
            server_wildcard(server), PolicyDecision.ALLOW, MCP_ALLOWED_PRIORITY, "mcp.allowed",
        ))

    for server, config in settings.mcp_servers.items():
        if config.trust:
            rules.append(_settings_rule(
                server_wildcard(server), PolicyDecision.ALLOW, MCP_TRUSTED_PRIORITY, "mcpServers.trust",
            ))

    for tool in settings.tools.allowed:
        rules.append(_settings_rule(
            tool, PolicyDecision.ALLOW, TOOL_ALLOWED_PRIORITY, "tools.allowed",
        ))

    for server in settings.mcp.excluded:
        rules.append(_settings_rule(
            server_wildcard(server), PolicyDecision.DENY, MCP_EXCLUDED_PRIORITY, "mcp.excluded",
        ))

    for tool in settings.tools.exclude:
        rules.append(_settings_rule(
            tool, PolicyDecision.DENY, TOOL_EXCLUDED_PRIORITY, "tools.exclude",
        ))

    logger.debug("Synthesized %d rule(s) from settings", len(rules))
    return rules


def interactive_allow_rule(tool_name: str) -> PolicyRule:
    """
    Rule recorded when the user chooses "always allow" for a tool.

    Placed at an absolute priority just below the ADMIN band, so it beats
    every other USER rule (including exclusions) but never an ADMIN rule.
    """
    return PolicyRule(
        tool_name=tool_name,
        decision=PolicyDecision.ALLOW,
        priority=INTERACTIVE_ALLOW_PRIORITY,
        source="interactive",
    )
