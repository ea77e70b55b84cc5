"""Exclusion policy for the mirror job.

Rules follow the subset of rsync's exclude syntax that the mirror relies on,
so the same rule list can drive both the rsync engine and the built-in one:

* a trailing ``/`` restricts the rule to directories;
* a leading ``/`` anchors the rule at the root of the transfer;
* a pattern with an inner ``/`` matches the trailing components of a path;
* any other pattern matches the entry's basename at any depth.

Globs are evaluated per path component, so ``*`` never crosses ``/``.
"""

import fnmatch
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .constants import APP_NAME, DEFAULT_EXCLUDES

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class ExcludeRule:
    """A single path pattern that removes matching entries from the mirror.

    Attributes:
        pattern (str): The rsync-style pattern.

    Raises:
        ValueError: If the pattern is empty, spans lines, or excludes everything.
    """

    pattern: str

    def __post_init__(self) -> None:
        if not self.pattern or not self.pattern.strip():
            raise ValueError("Exclusion pattern must not be empty")
        if "\n" in self.pattern or "\r" in self.pattern:
            raise ValueError(f"Exclusion pattern spans lines: {self.pattern!r}")
        if not self.pattern.strip("/"):
            raise ValueError(f"Exclusion pattern '{self.pattern}' matches everything")

    @property
    def dir_only(self) -> bool:
        return self.pattern.endswith("/")

    @property
    def anchored(self) -> bool:
        return self.pattern.startswith("/")

    @property
    def parts(self) -> tuple[str, ...]:
        return tuple(p for p in self.pattern.strip("/").split("/") if p)

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        """Checks whether an entry is excluded by this rule.

        Args:
            rel_path (str): Forward-slash path relative to the transfer root.
            is_dir (bool): Whether the entry is a directory.

        Returns:
            bool: True if the entry must be left out of the mirror.
        """
        if self.dir_only and not is_dir:
            return False

        path_parts = [p for p in rel_path.split("/") if p]
        parts = self.parts
        if len(path_parts) < len(parts):
            return False

        if self.anchored:
            if len(path_parts) != len(parts):
                return False
            candidate = path_parts
        else:
            candidate = path_parts[-len(parts) :]

        return all(
            fnmatch.fnmatchcase(name, pat) for name, pat in zip(candidate, parts)
        )


@dataclass(frozen=True)
class RuleSet:
    """An ordered, de-duplicated collection of exclusion rules."""

    rules: tuple[ExcludeRule, ...] = ()

    @classmethod
    def from_patterns(cls, patterns: Iterable[str]) -> "RuleSet":
        unique = dict.fromkeys(p.strip() for p in patterns)
        return cls(tuple(ExcludeRule(p) for p in unique))

    def __iter__(self) -> Iterator[ExcludeRule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def excludes(self, rel_path: str, is_dir: bool) -> bool:
        return any(rule.matches(rel_path, is_dir) for rule in self.rules)

    def rsync_args(self) -> list[str]:
        """Renders the rules as rsync `--exclude` options, in order."""
        return [f"--exclude={rule.pattern}" for rule in self.rules]


def _nested_anchor(inner: Path, outer: Path) -> str | None:
    """Returns an anchored directory rule for `inner` if it lives below `outer`."""
    try:
        rel = inner.resolve().relative_to(outer.resolve())
    except ValueError:
        return None
    if rel == Path("."):
        return None
    return f"/{rel.as_posix()}/"


def build_ruleset(config: "Config") -> RuleSet:
    """Assembles the exclusion policy for a mirror run.

    Combines `.git/`, the built-in defaults (unless disabled), the configured extra
    patterns, and anchored rules keeping the mirror target, the bare repository
    and the log directory out of the copy when they are nested in the source.

    Args:
        config (Config): The active configuration.

    Returns:
        RuleSet: The rules in evaluation order.
    """
    # The target's own metadata is protected even without the defaults.
    patterns: list[str] = [".git/"]
    if config.mirror.use_default_excludes:
        patterns.extend(DEFAULT_EXCLUDES)
    patterns.extend(config.mirror.exclude)

    paths = config.paths
    for inner in (paths.target, paths.bare_repo, paths.log_dir):
        anchor = _nested_anchor(inner, paths.source)
        if anchor:
            patterns.append(anchor)

    rules = RuleSet.from_patterns(patterns)
    logger.debug(f"Exclusion policy: {len(rules)} rules")
    return rules
