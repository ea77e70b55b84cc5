import os
from pathlib import Path

"""Global constants and default filesystem layout for Git Harbor.

This module defines application identifiers, the default service-account
layout, the built-in exclusion policy, and the exit codes shared by the jobs.
"""

# --- Identity ---
APP_NAME = "git-harbor"
"""str: The human-readable application name (also the root logger name)."""

CRON_MARKER = f"# {APP_NAME}:backup (managed)"
"""str: Comment line tagging the managed schedule entry in a crontab."""

# --- Configuration Paths ---
_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
CONFIG_DIR: Path = (
    Path(_XDG_CONFIG) if _XDG_CONFIG else Path.home() / ".config"
) / APP_NAME
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The default configuration file path."""

CONFIG_ENV_VAR = "GIT_HARBOR_CONFIG"
"""str: Environment variable that overrides the configuration file path."""

# --- Layout (relative to the service account home) ---
INSTALL_DIR_NAME = "install"
SERVICES_DIR_NAME = "services/backup"
LOG_DIR_NAME = "logs"
MIRROR_DIR_NAME = "gitrepo"
BARE_REPO_NAME = "gitrepo.git"

MIRROR_LOG_NAME = "sync_to_repo.log"
"""str: Log file of the mirror job."""

PUSH_LOG_NAME = "git_auto_push.log"
"""str: Log file of the commit/push job."""

LOCK_FILE_NAME = f"{APP_NAME}.lock"
"""str: Lease file guarding the mirror + commit/push sequence."""

LOG_RETENTION = 25
"""int: Number of compressed log archives kept per job."""

LOCAL_PUSH_REMOTE = "localpush"
"""str: Remote name of the bare repository inside the mirror tree."""

UPSTREAM_REMOTE = "upstream"
"""str: Remote name of the hosted repository inside the bare repository."""

# --- Exit Codes ---
EXIT_OK = 0
EXIT_GUARD = 1
EXIT_PARTIAL = 23
"""int: Partial transfer (same meaning as rsync's code 23)."""
EXIT_BUSY = 75
"""int: Another run holds the lease (EX_TEMPFAIL)."""

# --- Exclusion Policy ---
DEFAULT_EXCLUDES = [
    # Credentials and secrets
    ".env",
    ".ssh/",
    ".gnupg/",
    "*.token*",
    "*.secret*",
    "*.pem",
    "*.key",
    # VCS metadata
    ".git/",
    ".github/",
    ".gitignore",
    # Caches and build state
    "__pycache__/",
    ".mypy_cache/",
    ".cache/",
    ".npm/",
    ".pm2/",
    "tmp/",
    ".tmp/",
    # Dependency trees and environments
    "node_modules/",
    ".venv/",
    "venv/",
    ".local/",
    "snap/",
    "package-lock.json",
    # Logs and databases
    "logs/",
    "sync_logs/",
    "*.log",
    "*.sqlite*",
    "*.db",
    "*.bak",
    # Editor and session state
    ".config/",
    ".vscode-server/",
    ".vscode-remote-containers/",
    ".bash_history",
    ".bash_logout",
    ".bashrc",
    ".profile",
    ".python_history",
    ".lesshst",
    ".selected_editor",
    ".sudo_as_admin_successful",
    ".wget-hsts",
    # Mail and trash
    "Maildir/",
    "trash/",
    ".trash/",
    ".Trash/",
]
"""list[str]: Built-in exclusion rules applied to every mirror run."""
