"""
CLI entry point for Warden.

This module provides the Typer-based command-line interface for Warden.

Commands:
    check       Evaluate one tool call and print the decision
    rules       List the compiled rules in evaluation order
    validate    Check policy files for errors

Architecture Note:
    The CLI is intentionally thin - it resolves the tier directories and
    settings, builds a PolicyEngine, and prints what the engine returns.
    Hosts embedding Warden use warden.policy directly.
"""

import json
import logging
import sys
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from warden import __version__
from warden.errors import WardenError
from warden.paths import default_policy_paths, user_settings_path
from warden.policy import PolicyEngine
from warden.policy.loader import validate_policy_path
from warden.policy.priority import tier_of
from warden.schema import (
    ApprovalMode,
    EvaluationResult,
    PolicyDecision,
    PolicyPaths,
    PolicyRule,
    Settings,
    TrustTier,
    load_settings,
)

# Initialize Typer app with metadata
app = typer.Typer(
    name="warden",
    help="Decide whether agent tool calls are allowed, denied, or need confirmation.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

EXIT_ALLOW = 0
EXIT_DENY = 1
EXIT_ASK_USER = 2
EXIT_ERROR = 3

DECISION_EXIT_CODES = {
    PolicyDecision.ALLOW: EXIT_ALLOW,
    PolicyDecision.DENY: EXIT_DENY,
    PolicyDecision.ASK_USER: EXIT_ASK_USER,
}

DECISION_STYLES = {
    PolicyDecision.ALLOW: "green",
    PolicyDecision.DENY: "red",
    PolicyDecision.ASK_USER: "yellow",
}

# Shared option types
ModeOption = Annotated[
    str,
    typer.Option("--mode", "-m", help="Approval mode (default, autoEdit, yolo)."),
]
SettingsOption = Annotated[
    Optional[Path],
    typer.Option(
        "--settings",
        "-s",
        help="Settings YAML file. Defaults to ~/.warden/settings.yaml if present.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
DefaultDirOption = Annotated[
    Optional[Path],
    typer.Option("--default-dir", help="Override the bundled default policy directory."),
]
UserDirOption = Annotated[
    Optional[Path],
    typer.Option("--user-dir", help="Override the user policy directory."),
]
AdminDirOption = Annotated[
    Optional[Path],
    typer.Option("--admin-dir", help="Override the admin policy directory."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", help="Log rule loading and evaluation details."),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output results in JSON format."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]warden[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    Warden - access-control policy engine for agent tool calls.

    Merges bundled, user and administrator rules into one decision per
    tool call: allow, deny, or ask the user.
    """
    pass


# =============================================================================
# Helpers
# =============================================================================


def _configure_logging(verbose: bool) -> None:
    """Send library logs to stderr; WARNING by default, DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _resolve_paths(
    default_dir: Path | None,
    user_dir: Path | None,
    admin_dir: Path | None,
) -> PolicyPaths:
    """Standard tier directories with any command-line overrides applied."""
    paths = default_policy_paths()
    return PolicyPaths(
        default_dir=default_dir or paths.default_dir,
        user_dir=user_dir or paths.user_dir,
        admin_dir=admin_dir or paths.admin_dir,
    )


def _resolve_settings(settings_path: Path | None) -> Settings | None:
    """Explicit settings file, else the user's settings file if it exists."""
    if settings_path is not None:
        return load_settings(settings_path)
    fallback = user_settings_path()
    if fallback.is_file():
        return load_settings(fallback)
    return None


def _build_engine(
    mode: str,
    settings_path: Path | None,
    default_dir: Path | None,
    user_dir: Path | None,
    admin_dir: Path | None,
) -> PolicyEngine:
    engine = PolicyEngine()
    engine.load(
        _resolve_paths(default_dir, user_dir, admin_dir),
        approval_mode=mode,
        settings=_resolve_settings(settings_path),
    )
    return engine


def _parse_args(args_json: str | None) -> dict[str, Any] | None:
    """Parse the --args option as a JSON object."""
    if args_json is None:
        return None
    data = json.loads(args_json)
    if not isinstance(data, dict):
        msg = f"--args must be a JSON object, got {type(data).__name__}"
        raise ValueError(msg)
    return data


def _tier_label(rule: PolicyRule) -> str:
    tier = tier_of(rule.priority)
    return tier.name.lower() if tier is not None else ""


def _rule_to_dict(rule: PolicyRule) -> dict[str, Any]:
    return {
        "tier": _tier_label(rule) or None,
        "tool_name": rule.tool_name,
        "args_pattern": rule.args_pattern.pattern if rule.args_pattern else None,
        "decision": rule.decision.value,
        "priority": rule.priority,
        "modes": sorted(rule.modes),
        "source": rule.source,
    }


def _output_json_error(error_type: str, message: str, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    output = {
        "error": True,
        "error_type": error_type,
        "message": message,
    }
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2))


def _report_error(error_type: str, e: Exception, json_output: bool, verbose: bool) -> None:
    if json_output:
        _output_json_error(error_type, str(e), verbose)
    else:
        console.print(f"[red]Error: {e}[/red]")
        if verbose:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")


# =============================================================================
# Commands
# =============================================================================


@app.command()
def check(
    tool_name: Annotated[
        str,
        typer.Argument(help="Tool to check (e.g. run_shell_command, github__create_issue)."),
    ],
    server: Annotated[
        Optional[str],
        typer.Option("--server", help="MCP server hosting the tool."),
    ] = None,
    args_json: Annotated[
        Optional[str],
        typer.Option("--args", "-a", help="Tool arguments as a JSON object."),
    ] = None,
    mode: ModeOption = ApprovalMode.DEFAULT.value,
    settings_path: SettingsOption = None,
    default_dir: DefaultDirOption = None,
    user_dir: UserDirOption = None,
    admin_dir: AdminDirOption = None,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Evaluate one tool call and print the decision.

    Exit code is 0 for allow, 1 for deny, 2 for ask_user, 3 on error.

    Example:
        $ warden check run_shell_command --args '{"command": "git status"}'
        $ warden check create_issue --server github --mode autoEdit
    """
    _configure_logging(verbose)

    try:
        args = _parse_args(args_json)
        engine = _build_engine(mode, settings_path, default_dir, user_dir, admin_dir)
        result = engine.explain(tool_name, mcp_server_name=server, args=args)
    except (WardenError, ValueError) as e:
        _report_error("check_error", e, json_output, verbose)
        raise typer.Exit(code=EXIT_ERROR)

    if json_output:
        _output_json_result(tool_name, server, mode, result)
    else:
        _display_result(tool_name, server, result, verbose)

    raise typer.Exit(code=DECISION_EXIT_CODES[result.decision])


def _display_result(
    tool_name: str,
    server: str | None,
    result: EvaluationResult,
    verbose: bool,
) -> None:
    """Display a decision in a formatted way."""
    style = DECISION_STYLES[result.decision]
    target = f"{server}/{tool_name}" if server else tool_name
    console.print(f"[bold]{target}[/bold]: [{style}]{result.decision.value}[/{style}]")
    console.print(f"[dim]{result.reason}[/dim]")

    if verbose and result.matched_rule is not None:
        rule = result.matched_rule
        console.print(f"[dim]  priority: {rule.priority:g}[/dim]")
        if rule.modes:
            console.print(f"[dim]  modes: {', '.join(sorted(rule.modes))}[/dim]")


def _output_json_result(
    tool_name: str,
    server: str | None,
    mode: str,
    result: EvaluationResult,
) -> None:
    """Output a decision in JSON format."""
    output = {
        "tool_name": tool_name,
        "mcp_server_name": server,
        "mode": mode,
        "decision": result.decision.value,
        "reason": result.reason,
        "matched_rule": _rule_to_dict(result.matched_rule) if result.matched_rule else None,
    }
    print(json.dumps(output, indent=2))


@app.command()
def rules(
    mode: ModeOption = ApprovalMode.DEFAULT.value,
    settings_path: SettingsOption = None,
    default_dir: DefaultDirOption = None,
    user_dir: UserDirOption = None,
    admin_dir: AdminDirOption = None,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    List the compiled rules in evaluation order.

    The first rule in the list that matches a call decides it.

    Example:
        $ warden rules --mode yolo
    """
    _configure_logging(verbose)

    try:
        engine = _build_engine(mode, settings_path, default_dir, user_dir, admin_dir)
    except WardenError as e:
        _report_error("rules_error", e, json_output, verbose)
        raise typer.Exit(code=EXIT_ERROR)

    if json_output:
        output = {
            "mode": mode,
            "default_decision": engine.default_decision.value,
            "rules": [_rule_to_dict(rule) for rule in engine.rules],
        }
        print(json.dumps(output, indent=2))
        return

    if not engine.rules:
        console.print("[dim]No rules loaded; every call will ask the user.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Tier")
    table.add_column("Tool", style="cyan")
    table.add_column("Args")
    table.add_column("Decision")
    table.add_column("Modes")
    table.add_column("Source", style="dim")

    for index, rule in enumerate(engine.rules, start=1):
        style = DECISION_STYLES[rule.decision]
        table.add_row(
            str(index),
            f"{rule.priority:.3f}",
            _tier_label(rule),
            rule.tool_name or "*",
            rule.args_pattern.pattern if rule.args_pattern else "",
            f"[{style}]{rule.decision.value}[/{style}]",
            ", ".join(sorted(rule.modes)) or "all",
            rule.source or "",
        )

    console.print(table)
    console.print(f"[dim]Default decision: {engine.default_decision.value}[/dim]")


@app.command()
def validate(
    path: Annotated[
        Path,
        typer.Argument(
            help="Policy file or directory of policy files.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    tier: Annotated[
        str,
        typer.Option(
            "--tier",
            help="Tier the files are loaded as (default, user, admin). "
            "User files must declare priorities below 950.",
        ),
    ] = TrustTier.DEFAULT.name.lower(),
    json_output: JsonOption = False,
) -> None:
    """
    Check policy files for errors.

    Reports TOML syntax errors, schema violations, invalid argsPattern
    expressions and out-of-range priorities.

    Example:
        $ warden validate ~/.warden/policies --tier user
    """
    try:
        trust_tier = TrustTier[tier.upper()]
    except KeyError:
        raise typer.BadParameter(
            f"expected one of default, user, admin; got {tier!r}",
            param_hint="--tier",
        ) from None

    report = validate_policy_path(path, trust_tier)
    invalid = {file: errors for file, errors in report.items() if errors}

    if json_output:
        output = {
            "valid": not invalid,
            "files": {str(file): errors for file, errors in report.items()},
        }
        print(json.dumps(output, indent=2))
        raise typer.Exit(code=0 if not invalid else 1)

    if not report:
        console.print(f"[yellow]No policy files found in {path}[/yellow]")
        raise typer.Exit(code=0)

    for file, errors in report.items():
        if errors:
            console.print(f"[red]✗[/red] {file}: {len(errors)} error(s)")
            for error in errors:
                console.print(f"  [red]•[/red] {error}")
        else:
            console.print(f"[green]✓[/green] {file}")

    raise typer.Exit(code=0 if not invalid else 1)


if __name__ == "__main__":
    app()
