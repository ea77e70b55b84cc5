import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    BARE_REPO_NAME,
    CONFIG_ENV_VAR,
    CONFIG_FILE,
    INSTALL_DIR_NAME,
    LOG_DIR_NAME,
    LOG_RETENTION,
    MIRROR_DIR_NAME,
    SERVICES_DIR_NAME,
)
from .rules import ExcludeRule
from .system import current_user

logger = logging.getLogger(APP_NAME)


class ConfigError(ValueError):
    """Raised when the configuration file cannot be used at all."""


def _default_user() -> str:
    try:
        return current_user()
    except KeyError:
        return Path.home().name


@dataclass
class AccountConfig:
    """Service account settings.

    Attributes:
        user (str): The account that owns the mirror and the crontab entry.
        home (Path): The account's home directory; root of the default layout.
    """

    user: str = field(default_factory=_default_user)
    home: Path = field(default_factory=Path.home)


@dataclass
class PathsConfig:
    """Filesystem layout. Unset entries derive from the account home.

    Attributes:
        source (Path | None): The live working directory to mirror.
        target (Path | None): The mirror tree (a git working tree).
        bare_repo (Path | None): The local bare repository used as a push target.
        log_dir (Path | None): Directory holding the rotated job logs.
        install_dir (Path | None): Directory for one-shot bootstrap artifacts.
        services_dir (Path | None): Directory for the recurring job wrappers.
    """

    source: Path | None = None
    target: Path | None = None
    bare_repo: Path | None = None
    log_dir: Path | None = None
    install_dir: Path | None = None
    services_dir: Path | None = None

    def resolve(self, home: Path) -> "PathsConfig":
        """Returns a copy with every path absolute and defaulted."""
        home = Path(home).expanduser()

        def _abs(value: Path | None, default: Path) -> Path:
            if value is None:
                return default
            value = Path(value).expanduser()
            return value if value.is_absolute() else home / value

        return PathsConfig(
            source=_abs(self.source, home),
            target=_abs(self.target, home / MIRROR_DIR_NAME),
            bare_repo=_abs(self.bare_repo, home / BARE_REPO_NAME),
            log_dir=_abs(self.log_dir, home / LOG_DIR_NAME),
            install_dir=_abs(self.install_dir, home / INSTALL_DIR_NAME),
            services_dir=_abs(self.services_dir, home / SERVICES_DIR_NAME),
        )


@dataclass
class MirrorConfig:
    """Mirror job settings.

    Attributes:
        engine (str): One of 'auto', 'rsync' or 'builtin'.
        use_default_excludes (bool): Whether the built-in exclusion policy applies.
        exclude (list[str]): Extra exclusion patterns (appended to defaults).
    """

    engine: str = "auto"
    use_default_excludes: bool = True
    exclude: list[str] = field(default_factory=list)


@dataclass
class LogsConfig:
    """Log rotation settings.

    Attributes:
        retention (int): Compressed archives kept per job log.
    """

    retention: int = LOG_RETENTION


@dataclass
class PushConfig:
    """Commit/push job settings.

    Attributes:
        remote (str): The remote receiving automated backups.
        all_branches (bool): Push every local branch instead of only HEAD.
    """

    remote: str = "origin"
    all_branches: bool = True


@dataclass
class ScheduleConfig:
    """Periodic trigger settings.

    Attributes:
        cron (str): The five-field cron schedule expression.
        nice (int): CPU niceness applied to the scheduled run.
        ionice_class (int): I/O scheduling class (2 = best-effort).
        ionice_level (int): I/O priority within the class (7 = lowest).
    """

    cron: str = "0 * * * *"
    nice: int = 10
    ionice_class: int = 2
    ionice_level: int = 7


@dataclass
class GitConfig:
    """Repository identity used by the bootstrap step.

    Attributes:
        user_name (str | None): Local commit author name.
        user_email (str | None): Local commit author email.
        remote_url (str | None): URL of the hosted repository.
    """

    user_name: str | None = None
    user_email: str | None = None
    remote_url: str | None = None


ENGINES = ("auto", "rsync", "builtin")


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        account (AccountConfig): Service account settings.
        paths (PathsConfig): Filesystem layout (always resolved after load).
        mirror (MirrorConfig): Mirror job settings.
        logs (LogsConfig): Log rotation settings.
        push (PushConfig): Commit/push settings.
        schedule (ScheduleConfig): Periodic trigger settings.
        git (GitConfig): Bootstrap identity settings.
        source_file (Path | None): The file this configuration was read from.
    """

    account: AccountConfig = field(default_factory=AccountConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    mirror: MirrorConfig = field(default_factory=MirrorConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)
    push: PushConfig = field(default_factory=PushConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    git: GitConfig = field(default_factory=GitConfig)
    source_file: Path | None = None

    def __post_init__(self) -> None:
        self.paths = self.paths.resolve(self.account.home)

    @classmethod
    def for_home(cls, home: Path, **sections: Any) -> "Config":
        """Builds a configuration rooted at `home` with the default layout."""
        account = sections.pop("account", None) or AccountConfig(home=Path(home))
        return cls(account=account, **sections)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from disk, applying defaults where necessary.

        Resolution order for the file: explicit `path`, the GIT_HARBOR_CONFIG
        environment variable, then the default location. A missing default
        file yields the defaults; a missing explicit file is an error.

        Args:
            path (Path | None): An explicit configuration file.

        Returns:
            Config: The populated configuration object.

        Raises:
            ConfigError: If an explicit file is missing or has a syntax error.
        """
        explicit = path is not None or bool(os.environ.get(CONFIG_ENV_VAR))
        if path is None:
            env_path = os.environ.get(CONFIG_ENV_VAR)
            path = Path(env_path) if env_path else CONFIG_FILE
        path = Path(path).expanduser()

        instance = cls()
        if not path.exists():
            if explicit:
                raise ConfigError(f"Config file not found: {path}")
            return instance

        # Re-derive unset paths from the merged home, not the process home.
        instance.paths = PathsConfig()
        instance._merge_from_file(path)
        instance.source_file = path
        instance.paths = instance.paths.resolve(instance.account.home)
        return instance

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance."""
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Config syntax error in {path}: {e}") from e

        unknown = set(data) - {
            "account",
            "paths",
            "mirror",
            "logs",
            "push",
            "schedule",
            "git",
        }
        if unknown:
            logger.warning(
                f"Unknown config sections in {path.name}: "
                f"{', '.join(sorted(unknown))}. Ignoring."
            )

        if "account" in data:
            self.account = self._update_dataclass(
                "account", self.account, data["account"]
            )
        if "paths" in data:
            self.paths = self._update_dataclass("paths", self.paths, data["paths"])
        if "mirror" in data:
            new_excludes = data["mirror"].pop("exclude", [])
            self.mirror = self._update_dataclass("mirror", self.mirror, data["mirror"])
            try:
                new_excludes = _coerce("mirror", "exclude", new_excludes)
            except ValueError as e:
                logger.warning(
                    f"Config error in [mirror].exclude: {e}. Falling back to default."
                )
                new_excludes = []
            if new_excludes:
                merged = [*self.mirror.exclude, *new_excludes]
                self.mirror.exclude = list(dict.fromkeys(merged))
        if "logs" in data:
            self.logs = self._update_dataclass("logs", self.logs, data["logs"])
        if "push" in data:
            self.push = self._update_dataclass("push", self.push, data["push"])
        if "schedule" in data:
            self.schedule = self._update_dataclass(
                "schedule", self.schedule, data["schedule"]
            )
        if "git" in data:
            self.git = self._update_dataclass("git", self.git, data["git"])

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and rejecting bad values."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue
            try:
                filtered_updates[k] = _coerce(section_name, k, v)
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. "
                    "Falling back to default."
                )

        return replace(instance, **filtered_updates)


def _coerce(section: str, key: str, value: Any) -> Any:
    """Validates and converts a single raw TOML value."""
    if section in ("account", "paths") and key != "user":
        if not isinstance(value, str) or not value:
            raise ValueError(f"Expected a path string, got {value!r}")
        return Path(value)
    if section == "mirror" and key == "engine":
        if value not in ENGINES:
            raise ValueError(f"Unknown engine '{value}' (choose from {ENGINES})")
        return value
    if section == "mirror" and key == "exclude":
        if not isinstance(value, list):
            raise ValueError(f"Expected a list of patterns, got {value!r}")
        patterns = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError(f"Expected a pattern string, got {item!r}")
            patterns.append(ExcludeRule(item.strip()).pattern)
        return patterns
    if section == "logs" and key == "retention":
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"Retention must be a positive integer, got {value!r}")
        return value
    if section == "schedule" and key != "cron":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Expected an integer, got {value!r}")
        return value
    if section == "schedule" and key == "cron":
        if not isinstance(value, str) or len(value.split()) != 5:
            raise ValueError(f"Invalid cron expression '{value}'")
        return value
    return value
