"""
Unit tests for the rule source loader.

Tests cover:
- Parsing and validating [[rule]] files
- Expanding toolName lists and mcpName scoping
- Approval mode filtering
- Skipping missing directories, broken files and broken rules
- Cancellation
- Policy file validation reports
"""

import logging
import threading
from pathlib import Path
from typing import Callable

import pytest

from warden.errors import LoadCancelledError, PolicyFileError
from warden.policy.loader import (
    compile_rules,
    load_policy_rules,
    parse_policy_file,
    rule_identities,
    validate_policy_path,
)
from warden.schema import PolicyDecision, PolicyPaths, RuleEntry, TrustTier

WritePolicy = Callable[[Path, str, str], Path]


# =============================================================================
# File Parsing
# =============================================================================


class TestParsePolicyFile:
    """Tests for parse_policy_file()."""

    def test_valid_file(self, temp_dir: Path, write_policy: WritePolicy, sample_policy_toml: str) -> None:
        path = write_policy(temp_dir, "rules.toml", sample_policy_toml)
        policy_file = parse_policy_file(path)
        assert len(policy_file.rule) == 2
        assert policy_file.rule[0].tool_name == ["read_file", "glob"]
        assert policy_file.rule[1].decision is PolicyDecision.ASK_USER

    def test_toml_syntax_error(self, temp_dir: Path, write_policy: WritePolicy) -> None:
        path = write_policy(temp_dir, "bad.toml", "[[rule]\ndecision = ")
        with pytest.raises(PolicyFileError) as exc_info:
            parse_policy_file(path)
        assert "TOML syntax error" in exc_info.value.reason

    def test_unknown_decision(self, temp_dir: Path, write_policy: WritePolicy) -> None:
        path = write_policy(temp_dir, "bad.toml", '[[rule]]\ndecision = "maybe"\npriority = 1\n')
        with pytest.raises(PolicyFileError):
            parse_policy_file(path)

    def test_unknown_field(self, temp_dir: Path, write_policy: WritePolicy) -> None:
        path = write_policy(
            temp_dir, "bad.toml", '[[rule]]\ndecision = "allow"\npriority = 1\ncolour = "red"\n',
        )
        with pytest.raises(PolicyFileError):
            parse_policy_file(path)

    def test_boolean_priority_rejected(self, temp_dir: Path, write_policy: WritePolicy) -> None:
        """A boolean is not a priority, even though it would coerce to 1."""
        path = write_policy(
            temp_dir, "bad.toml", '[[rule]]\ntoolName = "x"\ndecision = "allow"\npriority = true\n',
        )
        with pytest.raises(PolicyFileError) as exc_info:
            parse_policy_file(path)
        assert "boolean" in exc_info.value.reason

    def test_missing_rule_array(self, temp_dir: Path, write_policy: WritePolicy) -> None:
        path = write_policy(temp_dir, "bad.toml", 'title = "no rules"\n')
        with pytest.raises(PolicyFileError):
            parse_policy_file(path)

    def test_missing_file(self, temp_dir: Path) -> None:
        with pytest.raises(PolicyFileError) as exc_info:
            parse_policy_file(temp_dir / "nope.toml")
        assert exc_info.value.code == 1002


# =============================================================================
# Entry Expansion
# =============================================================================


class TestRuleIdentities:
    """Tests for rule_identities()."""

    def test_single_name(self) -> None:
        entry = RuleEntry(toolName="read_file", decision="allow", priority=1)
        assert rule_identities(entry) == ["read_file"]

    def test_name_list(self) -> None:
        entry = RuleEntry(toolName=["a", "b", "c"], decision="allow", priority=1)
        assert rule_identities(entry) == ["a", "b", "c"]

    def test_mcp_with_tool(self) -> None:
        entry = RuleEntry(mcpName="github", toolName="create_issue", decision="deny", priority=1)
        assert rule_identities(entry) == ["github__create_issue"]

    def test_mcp_with_tool_list(self) -> None:
        entry = RuleEntry(mcpName="gh", toolName=["a", "b"], decision="deny", priority=1)
        assert rule_identities(entry) == ["gh__a", "gh__b"]

    def test_mcp_alone_is_server_wildcard(self) -> None:
        entry = RuleEntry(mcpName="github", decision="allow", priority=1)
        assert rule_identities(entry) == ["github__*"]

    def test_neither_is_any_tool(self) -> None:
        entry = RuleEntry(decision="allow", priority=0)
        assert rule_identities(entry) == [None]

    def test_empty_name_list_rejected(self) -> None:
        with pytest.raises(ValueError):
            RuleEntry(toolName=[], decision="allow", priority=1)


# =============================================================================
# Directory Loading
# =============================================================================


class TestLoadPolicyRules:
    """Tests for load_policy_rules()."""

    def test_loads_all_tiers_in_order(
        self, policy_paths: PolicyPaths, write_policy: WritePolicy,
    ) -> None:
        write_policy(policy_paths.admin_dir, "a.toml", '[[rule]]\ntoolName = "x"\ndecision = "deny"\npriority = 1\n')
        write_policy(policy_paths.default_dir, "d.toml", '[[rule]]\ntoolName = "x"\ndecision = "allow"\npriority = 1\n')
        write_policy(policy_paths.user_dir, "u.toml", '[[rule]]\ntoolName = "x"\ndecision = "ask_user"\npriority = 1\n')

        rules = load_policy_rules(policy_paths.tier_directories(), "default")

        assert [r.tier for r in rules] == [TrustTier.DEFAULT, TrustTier.USER, TrustTier.ADMIN]
        assert [r.source for r in rules] == ["default:d.toml", "user:u.toml", "admin:a.toml"]

    def test_all_files_in_directory_aggregated(
        self, policy_paths: PolicyPaths, write_policy: WritePolicy,
    ) -> None:
        for name in ("b.toml", "a.toml", "c.toml"):
            write_policy(policy_paths.user_dir, name, f'[[rule]]\ntoolName = "{name}"\ndecision = "allow"\npriority = 1\n')
        write_policy(policy_paths.user_dir, "notes.txt", "not a policy")

        rules = load_policy_rules(policy_paths.tier_directories(), "default")

        assert [r.tool_name for r in rules] == ["a.toml", "b.toml", "c.toml"]

    def test_tool_name_list_expanded(
        self, policy_paths: PolicyPaths, write_policy: WritePolicy, sample_policy_toml: str,
    ) -> None:
        write_policy(policy_paths.default_dir, "rules.toml", sample_policy_toml)

        rules = load_policy_rules(policy_paths.tier_directories(), "default")

        assert [r.tool_name for r in rules] == ["read_file", "glob", "run_shell_command"]
        assert rules[0].entry is rules[1].entry

    def test_missing_directory_skipped(self, temp_dir: Path, write_policy: WritePolicy) -> None:
        write_policy(temp_dir / "user", "u.toml", '[[rule]]\ntoolName = "x"\ndecision = "allow"\npriority = 1\n')
        paths = PolicyPaths(
            default_dir=temp_dir / "missing",
            user_dir=temp_dir / "user",
            admin_dir=temp_dir / "also-missing",
        )

        rules = load_policy_rules(paths.tier_directories(), "default")

        assert len(rules) == 1

    def test_broken_file_skipped(
        self,
        policy_paths: PolicyPaths,
        write_policy: WritePolicy,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        write_policy(policy_paths.user_dir, "a.toml", "[[rule]\nbroken")
        write_policy(policy_paths.user_dir, "b.toml", '[[rule]]\ntoolName = "ok"\ndecision = "allow"\npriority = 1\n')

        with caplog.at_level(logging.WARNING, logger="warden.policy.loader"):
            rules = load_policy_rules(policy_paths.tier_directories(), "default")

        assert [r.tool_name for r in rules] == ["ok"]
        assert "a.toml" in caplog.text

    def test_invalid_args_pattern_drops_only_that_rule(
        self,
        policy_paths: PolicyPaths,
        write_policy: WritePolicy,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        content = """
[[rule]]
toolName = "bad"
argsPattern = "([unclosed"
decision = "allow"
priority = 1

[[rule]]
toolName = "good"
argsPattern = "git (status|log)"
decision = "allow"
priority = 1
"""
        write_policy(policy_paths.user_dir, "rules.toml", content)

        with caplog.at_level(logging.WARNING, logger="warden.policy.loader"):
            rules = load_policy_rules(policy_paths.tier_directories(), "default")

        assert [r.tool_name for r in rules] == ["good"]
        assert rules[0].args_pattern.search("git log") is not None
        assert "argsPattern" in caplog.text

    def test_out_of_range_priority_drops_rule_loudly(
        self,
        policy_paths: PolicyPaths,
        write_policy: WritePolicy,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        content = """
[[rule]]
toolName = "too_high"
decision = "allow"
priority = 1000

[[rule]]
toolName = "fine"
decision = "allow"
priority = 999
"""
        write_policy(policy_paths.admin_dir, "rules.toml", content)

        with caplog.at_level(logging.WARNING, logger="warden.policy.loader"):
            rules = load_policy_rules(policy_paths.tier_directories(), "default")

        assert [r.tool_name for r in rules] == ["fine"]
        error_records = [rec for rec in caplog.records if rec.levelno == logging.ERROR]
        assert len(error_records) == 1
        assert "too_high" in error_records[0].getMessage()

    def test_user_rules_stay_below_interactive_approvals(
        self,
        policy_paths: PolicyPaths,
        write_policy: WritePolicy,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """USER files are limited to declared priorities below 950."""
        content = """
[[rule]]
toolName = "at_limit"
decision = "deny"
priority = 950

[[rule]]
toolName = "below_limit"
decision = "deny"
priority = 949.5
"""
        write_policy(policy_paths.user_dir, "rules.toml", content)
        write_policy(policy_paths.admin_dir, "rules.toml", content)

        with caplog.at_level(logging.WARNING, logger="warden.policy.loader"):
            rules = load_policy_rules(policy_paths.tier_directories(), "default")

        assert [(r.tier, r.tool_name) for r in rules] == [
            (TrustTier.USER, "below_limit"),
            (TrustTier.ADMIN, "at_limit"),
            (TrustTier.ADMIN, "below_limit"),
        ]
        assert "at_limit" in caplog.text
        assert "950" in caplog.text


class TestModeFiltering:
    """Rules for other approval modes are dropped at load time."""

    CONTENT = """
[[rule]]
toolName = "always"
decision = "allow"
priority = 1

[[rule]]
toolName = "edit_only"
decision = "allow"
priority = 1
modes = ["autoEdit"]

[[rule]]
toolName = "empty_modes"
decision = "allow"
priority = 1
modes = []
"""

    def test_default_mode(self, policy_paths: PolicyPaths, write_policy: WritePolicy) -> None:
        write_policy(policy_paths.default_dir, "rules.toml", self.CONTENT)
        rules = load_policy_rules(policy_paths.tier_directories(), "default")
        assert [r.tool_name for r in rules] == ["always", "empty_modes"]

    def test_matching_mode(self, policy_paths: PolicyPaths, write_policy: WritePolicy) -> None:
        write_policy(policy_paths.default_dir, "rules.toml", self.CONTENT)
        rules = load_policy_rules(policy_paths.tier_directories(), "autoEdit")
        assert [r.tool_name for r in rules] == ["always", "edit_only", "empty_modes"]

    def test_modes_kept_on_compiled_rule(self, policy_paths: PolicyPaths, write_policy: WritePolicy) -> None:
        write_policy(policy_paths.default_dir, "rules.toml", self.CONTENT)
        compiled = compile_rules(load_policy_rules(policy_paths.tier_directories(), "autoEdit"))
        assert compiled[1].modes == frozenset({"autoEdit"})
        assert compiled[0].modes == frozenset()


class TestCompileRules:
    """Tests for compile_rules()."""

    def test_compiled_priorities(self, policy_paths: PolicyPaths, write_policy: WritePolicy) -> None:
        write_policy(policy_paths.default_dir, "d.toml", '[[rule]]\ntoolName = "x"\ndecision = "ask_user"\npriority = 10\n')
        write_policy(policy_paths.admin_dir, "a.toml", '[[rule]]\ntoolName = "x"\ndecision = "allow"\npriority = 5\n')

        compiled = compile_rules(load_policy_rules(policy_paths.tier_directories(), "default"))

        assert [r.priority for r in compiled] == [pytest.approx(1.010), pytest.approx(3.005)]
        assert compiled[0].source == "default:d.toml"


class TestCancellation:
    """Tests for cancelling a load."""

    def test_cancelled_before_start(
        self, policy_paths: PolicyPaths, write_policy: WritePolicy, sample_policy_toml: str,
    ) -> None:
        write_policy(policy_paths.default_dir, "rules.toml", sample_policy_toml)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(LoadCancelledError) as exc_info:
            load_policy_rules(policy_paths.tier_directories(), "default", cancel=cancel)
        assert exc_info.value.files_read == 0

    def test_unset_event_loads_normally(
        self, policy_paths: PolicyPaths, write_policy: WritePolicy, sample_policy_toml: str,
    ) -> None:
        write_policy(policy_paths.default_dir, "rules.toml", sample_policy_toml)
        rules = load_policy_rules(policy_paths.tier_directories(), "default", cancel=threading.Event())
        assert len(rules) == 3


# =============================================================================
# Validation
# =============================================================================


class TestValidatePolicyPath:
    """Tests for validate_policy_path()."""

    def test_valid_directory(
        self, temp_dir: Path, write_policy: WritePolicy, sample_policy_toml: str,
    ) -> None:
        path = write_policy(temp_dir, "rules.toml", sample_policy_toml)
        assert validate_policy_path(temp_dir) == {path: []}

    def test_reports_rule_errors(self, temp_dir: Path, write_policy: WritePolicy) -> None:
        path = write_policy(
            temp_dir,
            "rules.toml",
            '[[rule]]\ntoolName = "x"\ndecision = "allow"\npriority = 4000\n'
            '[[rule]]\ntoolName = "y"\nargsPattern = "("\ndecision = "allow"\npriority = 1\n',
        )
        errors = validate_policy_path(path)[path]
        assert len(errors) == 2
        assert errors[0].startswith("rule[0]")
        assert errors[1].startswith("rule[1]")

    def test_user_tier_limit(self, temp_dir: Path, write_policy: WritePolicy) -> None:
        path = write_policy(
            temp_dir, "rules.toml", '[[rule]]\ntoolName = "x"\ndecision = "allow"\npriority = 960\n',
        )
        assert validate_policy_path(path)[path] == []
        errors = validate_policy_path(path, TrustTier.USER)[path]
        assert len(errors) == 1
        assert "950" in errors[0]

    def test_reports_file_errors(self, temp_dir: Path, write_policy: WritePolicy) -> None:
        path = write_policy(temp_dir, "rules.toml", "not toml at all [")
        errors = validate_policy_path(temp_dir)[path]
        assert len(errors) == 1
