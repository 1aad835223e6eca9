"""
Host-side resolution of the policy tier directories.

The engine never looks up directories itself; a host (such as the CLI)
calls default_policy_paths() and passes the result in explicitly.

Locations:
    default  policies/ shipped inside the warden package
    user     ~/.warden/policies
    admin    policies/ next to the system-wide settings file:
             /etc/warden                              (Linux)
             /Library/Application Support/Warden      (macOS)
             C:\\ProgramData\\warden                   (Windows)
             or the directory of $WARDEN_SYSTEM_SETTINGS_PATH
"""

import os
import sys
from pathlib import Path

from warden.schema import PolicyPaths

SYSTEM_SETTINGS_ENV = "WARDEN_SYSTEM_SETTINGS_PATH"
SETTINGS_FILE_NAME = "settings.yaml"
POLICIES_DIR_NAME = "policies"
USER_CONFIG_DIR_NAME = ".warden"


def bundled_policies_dir() -> Path:
    """Directory holding the policy files shipped with warden."""
    # src/warden/paths.py -> src/warden/policies/
    return Path(__file__).resolve().parent / POLICIES_DIR_NAME


def user_config_dir(home: Path | None = None) -> Path:
    """Per-user configuration directory (~/.warden)."""
    return (home or Path.home()) / USER_CONFIG_DIR_NAME


def user_settings_path(home: Path | None = None) -> Path:
    """Per-user settings file (~/.warden/settings.yaml)."""
    return user_config_dir(home) / SETTINGS_FILE_NAME


def system_settings_path(platform: str | None = None) -> Path:
    """
    System-wide settings file, administered outside the user's control.

    Args:
        platform: Override for sys.platform (used by tests)
    """
    override = os.environ.get(SYSTEM_SETTINGS_ENV)
    if override:
        return Path(override)

    platform = platform or sys.platform
    if platform == "darwin":
        base = Path("/Library/Application Support/Warden")
    elif platform.startswith("win"):
        base = Path("C:/ProgramData/warden")
    else:
        base = Path("/etc/warden")
    return base / SETTINGS_FILE_NAME


def default_policy_paths(home: Path | None = None) -> PolicyPaths:
    """The standard default, user and admin policy directories."""
    return PolicyPaths(
        default_dir=bundled_policies_dir(),
        user_dir=user_config_dir(home) / POLICIES_DIR_NAME,
        admin_dir=system_settings_path().parent / POLICIES_DIR_NAME,
    )
