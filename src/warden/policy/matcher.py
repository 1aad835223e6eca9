"""
Pattern matching for policy rules.

A rule's tool pattern is parsed once into a ToolPattern. The engine only
ever asks a pattern whether it matches an identity, so new pattern kinds
can be added here without touching evaluation.

Supported patterns:
    None            any tool
    "read_file"     exact name
    "github__*"     any identity starting with "github__"
"""

import json
import re
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any

WILDCARD = "*"
MCP_SEPARATOR = "__"


class ToolPattern(ABC):
    """A parsed tool-name pattern."""

    @abstractmethod
    def matches(self, identity: str) -> bool:
        """Return True if the tool identity is covered by this pattern."""

    @staticmethod
    def parse(pattern: str | None) -> "ToolPattern":
        """Parse a rule's tool_name into a matcher."""
        return _parse_cached(pattern)


class AnyToolPattern(ToolPattern):
    """Matches every tool. Used by rules with no toolName or mcpName."""

    def matches(self, identity: str) -> bool:
        return True

    def __repr__(self) -> str:
        return "AnyToolPattern()"


class ExactPattern(ToolPattern):
    """Matches one tool identity exactly."""

    def __init__(self, name: str) -> None:
        self.name = name

    def matches(self, identity: str) -> bool:
        return identity == self.name

    def __repr__(self) -> str:
        return f"ExactPattern({self.name!r})"


class PrefixPattern(ToolPattern):
    """
    Matches identities that start with a literal prefix.

    "github__*" has prefix "github__", so it covers "github__create_issue"
    but not "githubx__create_issue" or "other__github__x".
    """

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix

    def matches(self, identity: str) -> bool:
        return identity.startswith(self.prefix)

    def __repr__(self) -> str:
        return f"PrefixPattern({self.prefix!r})"


@lru_cache(maxsize=1024)
def _parse_cached(pattern: str | None) -> ToolPattern:
    if pattern is None:
        return AnyToolPattern()
    if pattern.endswith(WILDCARD):
        return PrefixPattern(pattern[: -len(WILDCARD)])
    return ExactPattern(pattern)


def matches_tool(identity: str, pattern: str | None) -> bool:
    """Check a tool identity against a rule's tool pattern."""
    return ToolPattern.parse(pattern).matches(identity)


def matches_args(canonical: str, compiled: re.Pattern[str] | None) -> bool:
    """Check canonical arguments against a rule's args pattern. None always matches."""
    if compiled is None:
        return True
    return compiled.search(canonical) is not None


def composite_identity(server_name: str, tool_name: str) -> str:
    """Build the "server__tool" identity of an MCP-hosted tool."""
    return f"{server_name}{MCP_SEPARATOR}{tool_name}"


def server_wildcard(server_name: str) -> str:
    """Pattern matching every tool on an MCP server."""
    return f"{server_name}{MCP_SEPARATOR}{WILDCARD}"


def candidate_identities(tool_name: str, server_name: str | None = None) -> tuple[str, ...]:
    """
    Identities a request may be matched under.

    The bare name is always tried. With a server name, the composite form
    is tried too, unless the tool name is already qualified for that server.
    """
    if not server_name:
        return (tool_name,)
    prefix = f"{server_name}{MCP_SEPARATOR}"
    if tool_name.startswith(prefix):
        return (tool_name,)
    return (tool_name, composite_identity(server_name, tool_name))


_IDENTITY_RE = re.compile(r"^[^\s*]+$")


def is_valid_identity(pattern: str | None) -> bool:
    """
    Whether a pattern is acceptable for a runtime-injected rule.

    Exact identities are accepted, and so is the "server__*" wildcard.
    Any-tool patterns (None, "*") and other prefix wildcards are not, so a
    single injected rule can never cover tools it did not name.
    """
    if pattern is None:
        return False
    if pattern.endswith(WILDCARD):
        prefix = pattern[: -len(WILDCARD)]
        if not prefix.endswith(MCP_SEPARATOR):
            return False
        server = prefix[: -len(MCP_SEPARATOR)]
        return bool(server) and _IDENTITY_RE.match(server) is not None
    return _IDENTITY_RE.match(pattern) is not None


def canonical_args(args: dict[str, Any] | str | None) -> str:
    """
    Canonical string form of a tool call's arguments.

    Strings are taken as already canonical. Mappings are serialized as
    compact JSON with sorted keys so that argsPattern expressions see the
    same text regardless of key order.
    """
    if args is None:
        return ""
    if isinstance(args, str):
        return args
    return json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)
