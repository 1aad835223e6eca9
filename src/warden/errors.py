"""
Exception hierarchy for Warden.

All Warden exceptions inherit from WardenError, allowing callers to catch
all Warden-specific exceptions with a single except clause.

Exception Categories:
    - PolicyFileError: A rule file could not be read, parsed or validated
    - RuleValidationError: A single rule entry is unusable
    - EngineNotReadyError: The engine was consulted before its rules loaded
    - InvalidRuleError: A runtime rule injection was rejected
    - SettingsError: The settings file could not be loaded

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (file, tool, priority where applicable)
    - All errors provide actionable suggestions where possible
    - Errors are designed to be both human-readable and machine-parseable
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Rule source errors: 1xxx
ERROR_POLICY_FILE_INVALID = 1001
ERROR_POLICY_FILE_UNREADABLE = 1002
ERROR_RULE_INVALID = 1101
ERROR_RULE_ARGS_PATTERN = 1102
ERROR_RULE_PRIORITY_RANGE = 1103
ERROR_LOAD_CANCELLED = 1201

# Engine errors: 2xxx
ERROR_ENGINE_NOT_READY = 2001
ERROR_ENGINE_INVALID_RULE = 2002
ERROR_ENGINE_ALREADY_LOADED = 2003

# Configuration errors: 3xxx
ERROR_SETTINGS_INVALID = 3001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class WardenError(Exception):
    """
    Base exception for all Warden errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Rule Source Errors
# =============================================================================


@dataclass
class PolicyFileError(WardenError):
    """
    Raised when a rule file cannot be parsed or fails schema validation.

    The loader catches this per file: the file is skipped and loading
    continues with the remaining files.

    Attributes:
        path: Path of the offending file
        reason: Parser or validator message
    """

    path: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid policy file {self.path}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_POLICY_FILE_INVALID
        if not self.suggestion:
            self.suggestion = "Check the file against the [[rule]] table format"
        self.context.update({
            "path": self.path,
            "reason": self.reason,
        })


@dataclass
class RuleValidationError(WardenError):
    """
    Raised when a single rule entry cannot be compiled.

    Attributes:
        path: File the rule came from (empty for synthesized rules)
        tool_name: Tool identity of the rule, if known
        reason: Why the rule was rejected
    """

    path: str = ""
    tool_name: str | None = None
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid rule for {self.tool_name or '*'}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_RULE_INVALID
        self.context.update({
            "path": self.path,
            "tool_name": self.tool_name,
            "reason": self.reason,
        })


@dataclass
class InvalidArgsPatternError(RuleValidationError):
    """Raised when an argsPattern is not a valid regular expression."""

    pattern: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid argsPattern {self.pattern!r}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_RULE_ARGS_PATTERN
        if not self.suggestion:
            self.suggestion = "argsPattern must be a Python regular expression"
        super().__post_init__()
        self.context["pattern"] = self.pattern


@dataclass
class PriorityOutOfRangeError(RuleValidationError):
    """
    Raised when a declared priority would break tier separation.

    Compiled priorities are tier + declared / 1000, so a declared priority
    outside [0, limit) would let a rule leak into another tier's band. The
    limit is 1000, or 950 for USER sources, whose rules must stay below
    interactive "always allow" approvals.
    """

    priority: float = 0.0
    limit: float = 1000.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Declared priority {self.priority} is outside [0, {self.limit:g})"
            )
        if self.code == 0:
            self.code = ERROR_RULE_PRIORITY_RANGE
        if not self.suggestion:
            self.suggestion = f"Use a priority of at least 0 and below {self.limit:g}"
        super().__post_init__()
        self.context["priority"] = self.priority
        self.context["limit"] = self.limit


@dataclass
class LoadCancelledError(WardenError):
    """Raised when rule loading is cancelled before it completes."""

    files_read: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy load cancelled after {self.files_read} file(s)"
        if self.code == 0:
            self.code = ERROR_LOAD_CANCELLED
        self.context["files_read"] = self.files_read


# =============================================================================
# Engine Errors
# =============================================================================


@dataclass
class EngineNotReadyError(WardenError):
    """
    Raised when the engine is consulted before a rule set is published.

    Evaluating against a partially loaded rule set is never permitted.
    """

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Policy engine has not finished loading its rules"
        if self.code == 0:
            self.code = ERROR_ENGINE_NOT_READY
        if not self.suggestion:
            self.suggestion = "Call load() or publish() first, or wait_until_ready()"


@dataclass
class InvalidRuleError(WardenError):
    """
    Raised when a rule offered to add_rule() is rejected.

    The compiled rule set is left untouched.
    """

    tool_name: str | None = None
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Rejected rule for {self.tool_name!r}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_ENGINE_INVALID_RULE
        self.context.update({
            "tool_name": self.tool_name,
            "reason": self.reason,
        })


@dataclass
class EngineAlreadyLoadedError(WardenError):
    """
    Raised when a second rule set is published to a loaded engine.

    Rules are loaded once; afterwards the only mutation is add_rule().
    """

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Policy engine already has a published rule set"
        if self.code == 0:
            self.code = ERROR_ENGINE_ALREADY_LOADED
        if not self.suggestion:
            self.suggestion = "Construct a new PolicyEngine to load a different rule set"


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class SettingsError(WardenError):
    """Raised when the settings file is missing, unreadable, or invalid."""

    path: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid settings {self.path or '<string>'}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_SETTINGS_INVALID
        self.context.update({
            "path": self.path,
            "reason": self.reason,
        })
