"""
Warden - Access-control policy engine for autonomous coding agents.

Warden decides, for every tool call an agent wants to make, whether to
ALLOW it, DENY it, or ASK_USER for confirmation. It provides:
- Rules merged from bundled, user and administrator sources
- Tool-name, MCP-server and argument pattern matching
- Fail-closed evaluation (unmatched calls require confirmation)
- Runtime "always allow" rules without restarting

Example usage:
    $ warden check run_shell_command --args '{"command": "ls"}'
    $ warden rules --mode autoEdit
    $ warden validate ~/.warden/policies
"""

__version__ = "0.1.0"
__author__ = "Warden Contributors"

__all__ = [
    "__version__",
    "__author__",
]
