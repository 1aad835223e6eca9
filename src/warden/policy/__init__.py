"""
Policy module for Warden.

This module implements the access-control core: deciding whether an
agent's tool call is allowed, denied, or needs the user's confirmation.

Key concepts:
    - Trust tiers: DEFAULT < USER < ADMIN, each owning a priority band
    - Compiled priority: tier + declared / 1000
    - Fail-closed: unmatched calls resolve to ASK_USER
    - Append-only updates: "always allow" adds rules at runtime

Submodules:
    - matcher: tool identity and argument matching
    - loader: reading [[rule]] files from tier directories
    - priority: mapping declared priorities into tier bands
    - settings: rules synthesized from user settings
    - engine: the PolicyEngine itself
"""

from warden.policy.engine import PolicyEngine, create_policy_engine_config
from warden.policy.loader import load_policy_rules
from warden.policy.priority import compile_priority
from warden.policy.settings import rules_from_settings

__all__ = [
    "PolicyEngine",
    "compile_priority",
    "create_policy_engine_config",
    "load_policy_rules",
    "rules_from_settings",
]
