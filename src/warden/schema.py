"""
Schema definitions for Warden.

This module defines the Pydantic models used throughout Warden:
- PolicyDecision/TrustTier/ApprovalMode: closed vocabularies
- RuleEntry/PolicyFile: the on-disk [[rule]] table format
- PolicyRule/PolicyEngineConfig: compiled rules the engine evaluates
- Settings: user-facing allow/exclude lists and trusted MCP servers
- PolicyPaths: the three tier directories supplied by the host
- PolicyUpdate/EvaluationResult: runtime messages and audit results

Design Decisions:
    - Rule files are strict (extra="forbid"); settings files are lenient
      because they carry keys owned by other parts of the host
    - Compiled models are immutable (frozen=True) so a published rule set
      can be shared between threads without copying
    - camelCase aliases match the external file formats
"""

import re
from enum import Enum, IntEnum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from warden.errors import SettingsError


# =============================================================================
# Enums
# =============================================================================


class PolicyDecision(str, Enum):
    """The outcome of evaluating a tool call."""

    ALLOW = "allow"
    DENY = "deny"
    ASK_USER = "ask_user"


class TrustTier(IntEnum):
    """
    Provenance of a rule source.

    The numeric value is the base of the compiled priority band, so any
    ADMIN rule outranks any USER rule, which outranks any DEFAULT rule.
    """

    DEFAULT = 1
    USER = 2
    ADMIN = 3


class ApprovalMode(str, Enum):
    """
    Well-known approval modes.

    The engine treats modes as opaque strings; these are the identifiers
    used by the bundled rule files.
    """

    DEFAULT = "default"
    AUTO_EDIT = "autoEdit"
    YOLO = "yolo"


# =============================================================================
# Rule File Models
# =============================================================================


class RuleEntry(BaseModel):
    """
    One [[rule]] table as written in a policy file.

    Attributes:
        tool_name: Tool name, or list of names sharing this rule
        mcp_name: MCP server the tool(s) belong to
        args_pattern: Regular expression source matched against arguments
        decision: allow, deny or ask_user
        priority: Declared priority within the file's tier
        modes: Approval modes the rule applies in (empty = all)
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    tool_name: str | list[str] | None = Field(default=None, alias="toolName")
    mcp_name: str | None = Field(default=None, alias="mcpName", min_length=1)
    args_pattern: str | None = Field(default=None, alias="argsPattern")
    decision: PolicyDecision
    priority: float
    modes: list[str] = Field(default_factory=list)

    @field_validator("tool_name")
    @classmethod
    def validate_tool_name(cls, v: str | list[str] | None) -> str | list[str] | None:
        """Reject empty names; an empty list would silently match nothing."""
        if v is None:
            return v
        names = [v] if isinstance(v, str) else v
        if not names:
            msg = "toolName list must not be empty"
            raise ValueError(msg)
        for name in names:
            if not name.strip():
                msg = "toolName entries must be non-empty"
                raise ValueError(msg)
        return v

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v: object) -> object:
        """Reject booleans, which would otherwise coerce to 0 or 1."""
        if isinstance(v, bool):
            msg = "priority must be a number, not a boolean"
            raise ValueError(msg)
        return v


class PolicyFile(BaseModel):
    """A complete policy file: an array of [[rule]] tables."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rule: list[RuleEntry]


# =============================================================================
# Compiled Rule Models
# =============================================================================


class PolicyRule(BaseModel):
    """
    A compiled rule as held by the policy engine.

    Attributes:
        tool_name: Tool identity pattern; None matches every tool, a
            trailing "*" matches any suffix
        args_pattern: Compiled expression searched in the canonical args
        decision: Decision returned when this rule wins
        priority: Compiled priority (tier + declared / 1000)
        modes: Approval modes the rule applies in (empty = all)
        source: Where the rule came from, for audit output
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tool_name: str | None = None
    args_pattern: re.Pattern[str] | None = None
    decision: PolicyDecision
    priority: float
    modes: frozenset[str] = Field(default_factory=frozenset)
    source: str | None = None

    def applies_to_mode(self, mode: str | None) -> bool:
        """Whether this rule is active in the given approval mode."""
        return not self.modes or mode in self.modes

    def describe(self) -> str:
        """Short human-readable form used in logs and reasons."""
        target = self.tool_name or "*"
        if self.args_pattern is not None:
            target += f" args~/{self.args_pattern.pattern}/"
        return f"{target} -> {self.decision.value} @ {self.priority:g}"


class PolicyEngineConfig(BaseModel):
    """
    Input for constructing a policy engine.

    The default decision is fixed to ASK_USER: an unmatched request must
    never resolve to an implicit ALLOW.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rules: list[PolicyRule] = Field(default_factory=list)
    default_decision: PolicyDecision = PolicyDecision.ASK_USER
    approval_mode: str = ApprovalMode.DEFAULT.value

    @field_validator("default_decision")
    @classmethod
    def validate_default_decision(cls, v: PolicyDecision) -> PolicyDecision:
        """Only the fail-closed default is accepted."""
        if v is not PolicyDecision.ASK_USER:
            msg = f"default_decision must be ask_user, got {v.value}"
            raise ValueError(msg)
        return v


# =============================================================================
# Settings Models
# =============================================================================


class ToolsSettings(BaseModel):
    """Individually allowed and excluded tools."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    allowed: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)


class McpSettings(BaseModel):
    """MCP servers allowed or excluded as a whole."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    allowed: list[str] = Field(default_factory=list)
    excluded: list[str] = Field(default_factory=list)


class McpServerConfig(BaseModel):
    """
    Per-server configuration.

    Only `trust` matters for policy; connection keys (command, url, ...)
    belong to the host and are ignored here.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    trust: bool = False


class Settings(BaseModel):
    """The policy-relevant subset of the user's settings file."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    tools: ToolsSettings = Field(default_factory=ToolsSettings)
    mcp: McpSettings = Field(default_factory=McpSettings)
    mcp_servers: dict[str, McpServerConfig] = Field(
        default_factory=dict,
        alias="mcpServers",
    )


class PolicyPaths(BaseModel):
    """
    The three tier directories, supplied explicitly by the host.

    Any of them may be None (tier not configured) or point at a missing
    directory (tier skipped at load time).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_dir: Path | None = None
    user_dir: Path | None = None
    admin_dir: Path | None = None

    def tier_directories(self) -> list[tuple[TrustTier, Path]]:
        """Ordered (tier, directory) pairs, lowest trust first."""
        pairs = [
            (TrustTier.DEFAULT, self.default_dir),
            (TrustTier.USER, self.user_dir),
            (TrustTier.ADMIN, self.admin_dir),
        ]
        return [(tier, path) for tier, path in pairs if path is not None]


# =============================================================================
# Runtime Models
# =============================================================================


class PolicyUpdate(BaseModel):
    """An "always allow this tool" event from the interactive layer."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    tool_name: str = Field(..., alias="toolName")


class EvaluationResult(BaseModel):
    """
    A decision together with the rule that produced it.

    Attributes:
        decision: The final decision
        matched_rule: Winning rule, or None when the default applied
        reason: Human-readable explanation of the decision
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    decision: PolicyDecision
    matched_rule: PolicyRule | None = None
    reason: str


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_settings(path: Path | str) -> Settings:
    """
    Load settings from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated Settings object

    Raises:
        SettingsError: If the file is missing, unreadable, or invalid
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SettingsError(path=str(path), reason=str(e)) from e

    return load_settings_from_string(content, source=str(path))


def load_settings_from_string(content: str, source: str = "") -> Settings:
    """Load settings from a YAML string. An empty document yields defaults."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SettingsError(path=source, reason=f"YAML syntax error: {e}") from e

    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise SettingsError(
            path=source,
            reason=f"expected a mapping, got {type(data).__name__}",
        )

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise SettingsError(path=source, reason=str(e)) from e
