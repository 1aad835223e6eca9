"""
Rule source loader.

Reads policy files from the tier directories and turns them into rules
ready for priority compilation.

Policy files are TOML documents holding an array of [[rule]] tables:

    [[rule]]
    toolName = ["read_file", "glob"]
    decision = "allow"
    priority = 50

    [[rule]]
    mcpName = "github"
    toolName = "create_issue"
    argsPattern = '"repo":"internal/'
    decision = "deny"
    priority = 100
    modes = ["autoEdit", "yolo"]

Design Decisions:
    - A missing directory is not an error; the tier is simply skipped
    - A broken file is logged and skipped; other files still load
    - A broken rule (bad argsPattern, out-of-range priority) is logged and
      dropped; other rules in the same file still load
    - Rules for other approval modes are dropped at load time
    - Nothing is returned until every directory has been read, so a
      cancelled load never produces a partial rule set
"""

import logging
import re
import threading
import tomllib
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from warden.errors import (
    ERROR_POLICY_FILE_UNREADABLE,
    InvalidArgsPatternError,
    LoadCancelledError,
    PolicyFileError,
    PriorityOutOfRangeError,
    RuleValidationError,
)
from warden.policy.matcher import composite_identity, server_wildcard
from warden.policy.priority import compile_priority, validate_declared_priority
from warden.schema import PolicyFile, PolicyRule, RuleEntry, TrustTier

logger = logging.getLogger(__name__)

POLICY_FILE_GLOB = "*.toml"


@dataclass(frozen=True)
class TieredRule:
    """
    A rule as loaded from a file, before priority compilation.

    Attributes:
        tool_name: Tool identity pattern (None = any tool)
        args_pattern: Compiled args expression, if any
        entry: The RuleEntry this rule was expanded from
        tier: Trust tier of the directory the file was found in
        source: "<tier>:<file name>" label for audit output
    """

    tool_name: str | None
    args_pattern: re.Pattern[str] | None
    entry: RuleEntry
    tier: TrustTier
    source: str

    def compile(self) -> PolicyRule:
        """Compile into an engine rule."""
        return PolicyRule(
            tool_name=self.tool_name,
            args_pattern=self.args_pattern,
            decision=self.entry.decision,
            priority=compile_priority(self.entry.priority, self.tier),
            modes=frozenset(self.entry.modes),
            source=self.source,
        )


# =============================================================================
# File Parsing
# =============================================================================


def parse_policy_file(path: Path) -> PolicyFile:
    """
    Read and validate one policy file.

    Args:
        path: Path to a TOML policy file

    Returns:
        Validated PolicyFile

    Raises:
        PolicyFileError: If the file cannot be read, parsed, or validated
    """
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PolicyFileError(
            path=str(path),
            reason=str(e),
            code=ERROR_POLICY_FILE_UNREADABLE,
        ) from e

    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise PolicyFileError(path=str(path), reason=f"TOML syntax error: {e}") from e

    try:
        return PolicyFile.model_validate(data)
    except ValidationError as e:
        raise PolicyFileError(path=str(path), reason=str(e)) from e


def compile_args_pattern(entry: RuleEntry, source: str) -> re.Pattern[str] | None:
    """Compile an entry's argsPattern, if present."""
    if entry.args_pattern is None:
        return None
    try:
        return re.compile(entry.args_pattern)
    except re.error as e:
        raise InvalidArgsPatternError(
            path=source,
            tool_name=_entry_label(entry),
            pattern=entry.args_pattern,
            reason=str(e),
        ) from e


def rule_identities(entry: RuleEntry) -> list[str | None]:
    """
    Tool identities an entry expands into.

    toolName may list several tools. With mcpName, each is qualified as
    "server__tool"; mcpName alone covers every tool on the server. With
    neither, the rule applies to any tool.
    """
    if entry.tool_name is None:
        names: list[str] = []
    elif isinstance(entry.tool_name, str):
        names = [entry.tool_name]
    else:
        names = list(entry.tool_name)

    if entry.mcp_name:
        if not names:
            return [server_wildcard(entry.mcp_name)]
        return [composite_identity(entry.mcp_name, name) for name in names]

    if not names:
        return [None]
    return list(names)


def expand_entry(entry: RuleEntry, tier: TrustTier, source: str) -> list[TieredRule]:
    """
    Expand one rule entry into atomic rules.

    Raises:
        RuleValidationError: If the args pattern or priority is invalid
    """
    try:
        validate_declared_priority(entry.priority, tier)
    except PriorityOutOfRangeError as e:
        raise PriorityOutOfRangeError(
            path=source,
            tool_name=_entry_label(entry),
            priority=entry.priority,
            limit=e.limit,
        ) from e

    args_pattern = compile_args_pattern(entry, source)
    return [
        TieredRule(
            tool_name=identity,
            args_pattern=args_pattern,
            entry=entry,
            tier=tier,
            source=source,
        )
        for identity in rule_identities(entry)
    ]


def _entry_label(entry: RuleEntry) -> str:
    names = entry.tool_name if entry.tool_name is not None else "*"
    if entry.mcp_name:
        return f"{entry.mcp_name}:{names}"
    return str(names)


def _applies_to_mode(entry: RuleEntry, approval_mode: str) -> bool:
    return not entry.modes or approval_mode in entry.modes


# =============================================================================
# Directory Loading
# =============================================================================


def policy_files(directory: Path) -> list[Path]:
    """Policy files in a directory, in a stable order."""
    return sorted(p for p in directory.glob(POLICY_FILE_GLOB) if p.is_file())


def load_policy_rules(
    tier_dirs: Iterable[tuple[TrustTier, Path]],
    approval_mode: str,
    cancel: threading.Event | None = None,
) -> list[TieredRule]:
    """
    Load rules from every tier directory for one approval mode.

    Args:
        tier_dirs: (tier, directory) pairs, usually PolicyPaths.tier_directories()
        approval_mode: Active approval mode; rules for other modes are dropped
        cancel: Optional event; when set, loading stops before the next file

    Returns:
        Uncompiled rules in tier, file, and declaration order

    Raises:
        LoadCancelledError: If cancel was set before loading finished
    """
    rules: list[TieredRule] = []
    files_read = 0

    for tier, directory in tier_dirs:
        if not directory.is_dir():
            logger.debug("Policy directory %s (%s) not found, skipping", directory, tier.name)
            continue

        for path in policy_files(directory):
            if cancel is not None and cancel.is_set():
                raise LoadCancelledError(files_read=files_read)

            source = f"{tier.name.lower()}:{path.name}"
            try:
                policy_file = parse_policy_file(path)
            except PolicyFileError as e:
                logger.warning("Skipping policy file: %s", e.message)
                continue
            files_read += 1

            for entry in policy_file.rule:
                if not _applies_to_mode(entry, approval_mode):
                    continue
                try:
                    rules.extend(expand_entry(entry, tier, source))
                except RuleValidationError as e:
                    # Out-of-range priorities would break tier precedence.
                    log = logger.error if isinstance(e, PriorityOutOfRangeError) else logger.warning
                    log("Dropping rule %s from %s: %s", e.tool_name, source, e.message)

    logger.debug("Loaded %d rule(s) from %d file(s) for mode %s", len(rules), files_read, approval_mode)
    return rules


def compile_rules(tiered: Iterable[TieredRule]) -> list[PolicyRule]:
    """Compile loaded rules; any rule that fails to compile is logged and dropped."""
    compiled: list[PolicyRule] = []
    for rule in tiered:
        try:
            compiled.append(rule.compile())
        except RuleValidationError as e:
            logger.error("Dropping rule from %s: %s", rule.source, e.message)
    return compiled


# =============================================================================
# Validation
# =============================================================================


def validate_policy_path(
    path: Path,
    tier: TrustTier = TrustTier.DEFAULT,
) -> dict[Path, list[str]]:
    """
    Validate a policy file, or every policy file in a directory.

    Unlike loading, this reports problems instead of skipping them and
    ignores approval modes. Priority limits are those of the given tier.

    Returns:
        Mapping of file path to a list of error messages (empty if valid)
    """
    files = policy_files(path) if path.is_dir() else [path]
    report: dict[Path, list[str]] = {}

    for file_path in files:
        errors: list[str] = []
        try:
            policy_file = parse_policy_file(file_path)
        except PolicyFileError as e:
            errors.append(e.reason)
        else:
            for index, entry in enumerate(policy_file.rule):
                try:
                    expand_entry(entry, tier, str(file_path))
                except RuleValidationError as e:
                    errors.append(f"rule[{index}]: {e.message}")
        report[file_path] = errors

    return report
