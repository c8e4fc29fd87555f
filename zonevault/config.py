"""
Configuration management for zonevault.

Supports:
- TOML config files
- Environment variables
- Command-line overrides
- Sensible defaults

Priority (highest to lowest):
1. Command-line arguments
2. Environment variables
3. Config file
4. Defaults
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Mapping

import pytz

from .errors import SnapshotError
from .snapshot.scheduler import CronSpec

try:
    import tomllib  # Python 3.11+
except ImportError:
    try:
        import tomli as tomllib  # Fallback for older Python
    except ImportError:
        tomllib = None


# Project root (where this file lives)
PROJECT_ROOT = Path(__file__).parent.resolve()

# Default config file locations (searched in order)
CONFIG_SEARCH_PATHS = [
    PROJECT_ROOT / "config.toml",
    PROJECT_ROOT / "zonevault.toml",
    Path.cwd() / "config.toml",
    Path.cwd() / "zonevault.toml",
    Path.home() / ".zonevault" / "config.toml",
    Path.home() / ".config" / "zonevault" / "config.toml",
]

TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class StorageConfig:
    """Snapshot store location."""
    root: str = "./backups"


@dataclass
class RetentionConfig:
    """Default retention limits for prune and the cleanup job."""
    max_age_days: int = 30
    max_count: int = 10
    exempt_categories: List[str] = field(default_factory=list)


@dataclass
class ProviderConfig:
    """Cloudflare API access."""
    api_base_url: str = "https://api.cloudflare.com/client/v4"
    api_token: Optional[str] = None
    timeout: float = 30.0
    pacing_interval: float = 0.1      # seconds between restore writes
    retry_attempts: int = 3
    retry_backoff: float = 0.2


@dataclass
class LocalConfigConfig:
    """Where the locally tracked security config lives."""
    backend: str = "json"             # json | postgres
    path: str = "./local_config"
    dsn: Optional[str] = None


@dataclass
class ActivityConfig:
    """Audit log location; an empty path disables auditing."""
    path: str = "~/.zonevault/activity.jsonl"


@dataclass
class ScheduleConfig:
    """Automatic backup jobs."""
    enabled: bool = False
    timezone: str = "UTC"
    daily: str = "0 2 * * *"
    weekly: str = "0 3 * * 0"
    cleanup: str = "0 4 * * *"
    zones: List[str] = field(default_factory=list)


@dataclass
class WorkerConfig:
    """Worker pool bound for bulk and scheduled work."""
    parallelism: int = 5


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    json: bool = False
    quiet: bool = False


@dataclass
class Config:
    """Main configuration container."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    local_config: LocalConfigConfig = field(default_factory=LocalConfigConfig)
    activity: ActivityConfig = field(default_factory=ActivityConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    workers: WorkerConfig = field(default_factory=WorkerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Source tracking
    _config_file: Optional[Path] = None

    @classmethod
    def load(
        cls,
        config_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Config":
        """
        Load configuration from file, then apply environment overrides.

        Args:
            config_path: Explicit path to config file. If None, searches default locations.
            environ: Environment mapping, defaults to os.environ

        Returns:
            Config instance with loaded values
        """
        config = cls()

        # Find config file
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
        else:
            path = cls._find_config_file()

        if path:
            config = cls._load_from_file(path)
            config._config_file = path

        config.apply_env(os.environ if environ is None else environ)
        return config

    @classmethod
    def _find_config_file(cls) -> Optional[Path]:
        """Find config file in default locations."""
        for path in CONFIG_SEARCH_PATHS:
            if path.exists():
                return path
        return None

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load config from TOML file."""
        if tomllib is None:
            raise ImportError(
                "TOML support requires Python 3.11+ or 'tomli' package. "
                "Install with: pip install tomli"
            )

        with open(path, "rb") as f:
            data = tomllib.load(f)

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        if "storage" in data:
            storage = data["storage"]
            config.storage = StorageConfig(
                root=storage.get("root", config.storage.root),
            )

        if "retention" in data:
            ret = data["retention"]
            config.retention = RetentionConfig(
                max_age_days=ret.get("max_age_days", config.retention.max_age_days),
                max_count=ret.get("max_count", config.retention.max_count),
                exempt_categories=list(ret.get("exempt_categories", [])),
            )

        if "provider" in data:
            prov = data["provider"]
            config.provider = ProviderConfig(
                api_base_url=prov.get("api_base_url", config.provider.api_base_url),
                api_token=prov.get("api_token") or None,
                timeout=prov.get("timeout", config.provider.timeout),
                pacing_interval=prov.get("pacing_interval", config.provider.pacing_interval),
                retry_attempts=prov.get("retry_attempts", config.provider.retry_attempts),
                retry_backoff=prov.get("retry_backoff", config.provider.retry_backoff),
            )

        if "local_config" in data:
            local = data["local_config"]
            config.local_config = LocalConfigConfig(
                backend=local.get("backend", config.local_config.backend),
                path=local.get("path", config.local_config.path),
                dsn=local.get("dsn") or None,
            )

        if "activity" in data:
            config.activity = ActivityConfig(
                path=data["activity"].get("path", config.activity.path),
            )

        if "schedule" in data:
            sched = data["schedule"]
            config.schedule = ScheduleConfig(
                enabled=sched.get("enabled", config.schedule.enabled),
                timezone=sched.get("timezone", config.schedule.timezone),
                daily=sched.get("daily", config.schedule.daily),
                weekly=sched.get("weekly", config.schedule.weekly),
                cleanup=sched.get("cleanup", config.schedule.cleanup),
                zones=list(sched.get("zones", [])),
            )

        if "workers" in data:
            config.workers = WorkerConfig(
                parallelism=data["workers"].get("parallelism", config.workers.parallelism),
            )

        if "logging" in data:
            log = data["logging"]
            config.logging = LoggingConfig(
                level=log.get("level", config.logging.level),
                json=log.get("json", config.logging.json),
                quiet=log.get("quiet", config.logging.quiet),
            )

        return config

    def apply_env(self, environ: Mapping[str, str]) -> "Config":
        """
        Override config values from environment variables.

        Raises:
            ValueError: If a numeric variable does not parse
        """
        if environ.get("BACKUP_ROOT"):
            self.storage.root = environ["BACKUP_ROOT"]
        if environ.get("BACKUP_RETENTION_DAYS"):
            self.retention.max_age_days = int(environ["BACKUP_RETENTION_DAYS"])
        if environ.get("MAX_BACKUPS_PER_ZONE"):
            self.retention.max_count = int(environ["MAX_BACKUPS_PER_ZONE"])
        if environ.get("RESTORE_PACING_MS"):
            self.provider.pacing_interval = int(environ["RESTORE_PACING_MS"]) / 1000.0
        if environ.get("ENABLE_AUTOMATIC_BACKUP"):
            self.schedule.enabled = environ["ENABLE_AUTOMATIC_BACKUP"].strip().lower() in TRUE_VALUES
        if environ.get("TIMEZONE"):
            self.schedule.timezone = environ["TIMEZONE"]
        if environ.get("CLOUDFLARE_API_TOKEN"):
            self.provider.api_token = environ["CLOUDFLARE_API_TOKEN"]
        if environ.get("CLOUDFLARE_API_BASE_URL"):
            self.provider.api_base_url = environ["CLOUDFLARE_API_BASE_URL"]
        if environ.get("CLOUDFLARE_API_TIMEOUT"):
            self.provider.timeout = float(environ["CLOUDFLARE_API_TIMEOUT"])
        if environ.get("LOCAL_CONFIG_DSN"):
            self.local_config.dsn = environ["LOCAL_CONFIG_DSN"]
            self.local_config.backend = "postgres"
        if environ.get("SNAPSHOT_WORKERS"):
            self.workers.parallelism = int(environ["SNAPSHOT_WORKERS"])
        if environ.get("LOG_LEVEL"):
            self.logging.level = environ["LOG_LEVEL"].upper()
        return self

    def override_from_args(self, args) -> "Config":
        """
        Override config values from argparse namespace.

        Args with value None are ignored (keeping config file values).
        """
        if getattr(args, "backup_root", None):
            self.storage.root = args.backup_root
        if getattr(args, "api_token", None):
            self.provider.api_token = args.api_token
        if getattr(args, "pacing_ms", None) is not None:
            self.provider.pacing_interval = args.pacing_ms / 1000.0
        if getattr(args, "workers", None):
            self.workers.parallelism = args.workers
        if getattr(args, "timezone", None):
            self.schedule.timezone = args.timezone
        if getattr(args, "log_level", None):
            self.logging.level = args.log_level.upper()
        if getattr(args, "log_json", None):
            self.logging.json = True
        if getattr(args, "quiet", None):
            self.logging.quiet = args.quiet

        return self

    def validate(self, require_provider: bool = True) -> list:
        """
        Validate configuration.

        Args:
            require_provider: Whether Cloudflare credentials are needed

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not self.storage.root:
            errors.append("Storage root is required")

        if self.retention.max_age_days < 1:
            errors.append("Retention max_age_days must be at least 1")
        if self.retention.max_count < 1:
            errors.append("Retention max_count must be at least 1")

        if require_provider and not self.provider.api_token:
            errors.append("Cloudflare API token not set. Set CLOUDFLARE_API_TOKEN environment variable")
        if self.provider.timeout <= 0:
            errors.append("Provider timeout must be positive")
        if self.provider.pacing_interval < 0:
            errors.append("Restore pacing interval cannot be negative")
        if self.provider.retry_attempts < 1:
            errors.append("Retry attempts must be at least 1")

        if self.local_config.backend not in ("json", "postgres"):
            errors.append(f"Unknown local config backend: {self.local_config.backend}")
        if self.local_config.backend == "postgres" and not self.local_config.dsn:
            errors.append("Postgres local config backend requires a DSN. Set LOCAL_CONFIG_DSN")

        if self.workers.parallelism < 1:
            errors.append("Worker parallelism must be at least 1")

        if self.schedule.timezone not in pytz.all_timezones_set:
            errors.append(f"Unknown schedule timezone: {self.schedule.timezone}")
        for name in ("daily", "weekly", "cleanup"):
            try:
                CronSpec.parse(getattr(self.schedule, name))
            except SnapshotError as e:
                errors.append(f"Invalid schedule.{name} expression: {e}")

        return errors

    def retention_policy(self):
        """Retention defaults as a RetentionPolicy."""
        from .snapshot.models import RetentionPolicy
        return RetentionPolicy(
            max_age_days=self.retention.max_age_days,
            max_count_per_resource=self.retention.max_count,
            exempt_categories=tuple(self.retention.exempt_categories),
        )

    def summary(self, include_config_path: bool = True) -> str:
        """Generate human-readable config summary."""
        lines = []

        if include_config_path:
            if self._config_file:
                lines.append(f"Config: {self._config_file}")
            else:
                lines.append("Config: (defaults)")

        lines.append(f"Storage: {self.storage.root}")
        lines.append(f"Retention: {self.retention.max_count} per zone, {self.retention.max_age_days} days")
        token = "set" if self.provider.api_token else "not set"
        lines.append(f"Provider: {self.provider.api_base_url} (token {token}, timeout {self.provider.timeout}s)")
        if self.local_config.backend == "postgres":
            lines.append("Local config: postgres")
        else:
            lines.append(f"Local config: json ({self.local_config.path})")
        state = "enabled" if self.schedule.enabled else "disabled"
        lines.append(f"Automatic backups: {state} ({self.schedule.timezone})")
        lines.append(f"Workers: {self.workers.parallelism}")

        return "\n".join(lines)


def create_example_config(path: str = "config.toml"):
    """Create example config file."""
    example = Path(__file__).parent / "config.example.toml"
    target = Path(path)

    if target.exists():
        raise FileExistsError(f"Config file already exists: {path}")

    target.write_text(example.read_text())
    return target
