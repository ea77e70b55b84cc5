"""Git Harbor: hourly mirror-and-push backups of a working directory.

This package provides the command-line interface, the mirror and commit/push
jobs, the crontab registrar, and the one-shot bootstrap of the service
account layout.
"""

from . import (
    backup,
    cli,
    config,
    constants,
    git_wrapper,
    logs,
    mirror,
    ops,
    rules,
    schedule,
    system,
)

__all__ = [
    "backup",
    "cli",
    "config",
    "constants",
    "git_wrapper",
    "logs",
    "mirror",
    "ops",
    "rules",
    "schedule",
    "system",
]
