"""
Policy Engine for Warden.

The Policy Engine decides whether a tool call is allowed, denied, or
needs the user's confirmation. Every tool call the agent wants to make
should be checked here before it runs.

Design Principles:
    - Fail-closed: a call no rule matches resolves to ASK_USER, never ALLOW
    - Tiered: ADMIN rules outrank USER rules, which outrank DEFAULT rules
    - Predictable: same rules and request always produce the same decision
    - Append-only: after loading, rules can only be added, never removed

How it works:
    1. Rules are loaded from the tier directories and settings, compiled
       and published once as an immutable, pre-sorted snapshot
    2. evaluate() walks the snapshot from the highest priority down and
       returns the decision of the first rule that matches the request
    3. On equal priority, DENY sorts before ASK_USER, which sorts before
       ALLOW, so the most restrictive decision wins ties
    4. add_rule() copies the snapshot, inserts the rule and swaps the
       reference; readers never see a half-applied update

Security Note:
    This module is security-critical. Changes should be reviewed carefully.
"""

import logging
import math
import threading
from typing import Any

from warden.bus import UpdateChannel
from warden.errors import (
    EngineAlreadyLoadedError,
    EngineNotReadyError,
    InvalidRuleError,
    WardenError,
)
from warden.policy.loader import compile_rules, load_policy_rules
from warden.policy.matcher import (
    ToolPattern,
    candidate_identities,
    canonical_args,
    is_valid_identity,
    matches_args,
)
from warden.policy.settings import interactive_allow_rule, rules_from_settings
from warden.schema import (
    ApprovalMode,
    EvaluationResult,
    PolicyDecision,
    PolicyEngineConfig,
    PolicyPaths,
    PolicyRule,
    PolicyUpdate,
    Settings,
    TrustTier,
)

logger = logging.getLogger(__name__)

# Lower rank wins among rules of equal priority.
DECISION_RANK: dict[PolicyDecision, int] = {
    PolicyDecision.DENY: 0,
    PolicyDecision.ASK_USER: 1,
    PolicyDecision.ALLOW: 2,
}


def _rule_order(rule: PolicyRule) -> tuple[float, int]:
    return (-rule.priority, DECISION_RANK[rule.decision])


def sort_rules(rules: list[PolicyRule] | tuple[PolicyRule, ...]) -> tuple[PolicyRule, ...]:
    """Order rules for evaluation: highest priority first, DENY first on ties."""
    return tuple(sorted(rules, key=_rule_order))


def create_policy_engine_config(
    paths: PolicyPaths,
    approval_mode: str = ApprovalMode.DEFAULT.value,
    settings: Settings | None = None,
    cancel: threading.Event | None = None,
) -> PolicyEngineConfig:
    """
    Build an engine config from the tier directories and settings.

    Args:
        paths: Default, user and admin policy directories
        approval_mode: Active approval mode
        settings: User settings to synthesize extra rules from
        cancel: Optional event that aborts loading

    Returns:
        PolicyEngineConfig with every applicable rule compiled

    Raises:
        LoadCancelledError: If cancel was set before loading finished
    """
    tiered = load_policy_rules(paths.tier_directories(), approval_mode, cancel=cancel)
    rules = compile_rules(tiered)
    if settings is not None:
        rules.extend(rules_from_settings(settings))

    return PolicyEngineConfig(rules=rules, approval_mode=approval_mode)


class PolicyEngine:
    """
    Central policy evaluator for Warden.

    Usage:
        channel = UpdateChannel()
        engine = PolicyEngine(updates=channel)
        engine.load(paths, approval_mode="default", settings=settings)

        decision = engine.evaluate("run_shell_command", args={"command": "ls"})
        if decision is PolicyDecision.ALLOW:
            # run the tool
        elif decision is PolicyDecision.ASK_USER:
            # prompt the user
        else:
            # refuse

    An engine constructed without a config is not ready: evaluate(),
    explain() and add_rule() raise EngineNotReadyError until load() or
    publish() completes. wait_until_ready() blocks until then.

    Attributes:
        default_decision: Decision returned when no rule matches
        _snapshot: Immutable, sorted rule tuple read by evaluators
        _write_lock: Serializes writers (publish, add_rule)
        _ready: Set once a complete rule set has been published
    """

    def __init__(
        self,
        config: PolicyEngineConfig | None = None,
        updates: UpdateChannel | None = None,
    ) -> None:
        """
        Initialize the policy engine.

        Args:
            config: Rule set to publish immediately; omit to load later
            updates: Channel delivering "always allow" events
        """
        self.default_decision = PolicyDecision.ASK_USER
        self._approval_mode: str = ApprovalMode.DEFAULT.value
        self._snapshot: tuple[PolicyRule, ...] = ()
        self._write_lock = threading.Lock()
        self._ready = threading.Event()

        if config is not None:
            self.publish(config)
        if updates is not None:
            updates.subscribe(self)

    # =========================================================================
    # Loading
    # =========================================================================

    def load(
        self,
        paths: PolicyPaths,
        approval_mode: str = ApprovalMode.DEFAULT.value,
        settings: Settings | None = None,
        cancel: threading.Event | None = None,
    ) -> PolicyEngineConfig:
        """
        Load rules from disk and settings, then publish them.

        Nothing is published if loading is cancelled, so the engine stays
        not ready rather than holding a partial rule set.

        Returns:
            The published config

        Raises:
            LoadCancelledError: If cancel was set before loading finished
            EngineAlreadyLoadedError: If a rule set was already published
        """
        if self.is_ready:
            raise EngineAlreadyLoadedError()
        config = create_policy_engine_config(paths, approval_mode, settings, cancel)
        self.publish(config)
        return config

    def publish(self, config: PolicyEngineConfig) -> None:
        """
        Publish a complete rule set and open the readiness gate.

        Raises:
            EngineAlreadyLoadedError: If a rule set was already published
        """
        with self._write_lock:
            if self._ready.is_set():
                raise EngineAlreadyLoadedError()
            self.default_decision = config.default_decision
            self._approval_mode = config.approval_mode
            self._snapshot = sort_rules(config.rules)
            self._ready.set()

        logger.info(
            "Published %d policy rule(s) for mode %s",
            len(self._snapshot),
            self._approval_mode,
        )

    @property
    def is_ready(self) -> bool:
        """Whether a rule set has been published."""
        return self._ready.is_set()

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Block until a rule set is published. Returns False on timeout."""
        return self._ready.wait(timeout)

    @property
    def approval_mode(self) -> str:
        """Mode used when evaluate() is called without one."""
        return self._approval_mode

    @property
    def rules(self) -> tuple[PolicyRule, ...]:
        """Current rule snapshot in evaluation order."""
        return self._snapshot

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(
        self,
        tool_name: str,
        mcp_server_name: str | None = None,
        args: dict[str, Any] | str | None = None,
        mode: str | None = None,
    ) -> PolicyDecision:
        """
        Decide whether a tool call may proceed.

        Args:
            tool_name: Tool being called (bare or "server__tool")
            mcp_server_name: MCP server hosting the tool, if any
            args: Call arguments, as a dict or an already canonical string
            mode: Approval mode; defaults to the mode the rules were loaded for

        Returns:
            ALLOW, DENY or ASK_USER

        Raises:
            EngineNotReadyError: If no rule set has been published yet
        """
        return self.explain(tool_name, mcp_server_name, args, mode).decision

    def explain(
        self,
        tool_name: str,
        mcp_server_name: str | None = None,
        args: dict[str, Any] | str | None = None,
        mode: str | None = None,
    ) -> EvaluationResult:
        """
        Evaluate a tool call and report which rule decided it.

        Takes the same arguments as evaluate().
        """
        if not self._ready.is_set():
            raise EngineNotReadyError()

        # One read of the reference; a concurrent add_rule swaps it, never mutates it.
        snapshot = self._snapshot
        active_mode = self._approval_mode if mode is None else mode
        identities = candidate_identities(tool_name, mcp_server_name)
        canonical = canonical_args(args)

        for rule in snapshot:
            if not rule.applies_to_mode(active_mode):
                continue
            pattern = ToolPattern.parse(rule.tool_name)
            if not any(pattern.matches(identity) for identity in identities):
                continue
            if not matches_args(canonical, rule.args_pattern):
                continue

            logger.debug("%s -> %s (%s)", identities[-1], rule.decision.value, rule.describe())
            return EvaluationResult(
                decision=rule.decision,
                matched_rule=rule,
                reason=f"Matched rule {rule.describe()}"
                + (f" from {rule.source}" if rule.source else ""),
            )

        logger.debug("%s -> %s (no matching rule)", identities[-1], self.default_decision.value)
        return EvaluationResult(
            decision=self.default_decision,
            reason="No rule matched; confirmation required",
        )

    # =========================================================================
    # Runtime Updates
    # =========================================================================

    def add_rule(self, rule: PolicyRule) -> None:
        """
        Append a rule to the live rule set.

        The rule is validated first; a rejected rule leaves the rule set
        untouched. Takes effect for evaluations that start after this
        returns.

        Raises:
            InvalidRuleError: If the rule is malformed, too broad, or would
                outrank administrator rules
            EngineNotReadyError: If no rule set has been published yet
        """
        self._validate_rule(rule)

        with self._write_lock:
            if not self._ready.is_set():
                raise EngineNotReadyError()
            self._snapshot = sort_rules((*self._snapshot, rule))

        logger.info("Added runtime policy rule %s", rule.describe())

    def on_policy_update(self, update: PolicyUpdate) -> None:
        """Handle an "always allow" event from the update channel."""
        try:
            self.add_rule(interactive_allow_rule(update.tool_name))
        except WardenError as e:
            logger.warning("Ignoring policy update for %r: %s", update.tool_name, e.message)

    def _validate_rule(self, rule: PolicyRule) -> None:
        """Reject rules that are malformed or would grant more than they name."""
        if not isinstance(rule, PolicyRule):
            raise InvalidRuleError(reason=f"expected PolicyRule, got {type(rule).__name__}")
        if not is_valid_identity(rule.tool_name):
            raise InvalidRuleError(
                tool_name=rule.tool_name,
                reason="tool name must be an exact identity or a server__* wildcard",
            )
        if not math.isfinite(rule.priority) or rule.priority >= TrustTier.ADMIN:
            raise InvalidRuleError(
                tool_name=rule.tool_name,
                reason=f"priority must be finite and below {int(TrustTier.ADMIN)}, got {rule.priority}",
            )
