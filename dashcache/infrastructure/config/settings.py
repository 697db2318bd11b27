"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (~/.dashcache/config.yaml), and builds the
validated Settings tree the services are constructed from.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from dashcache.domain.errors import ConfigurationError
from dashcache.domain.models.common import FailurePolicy
from dashcache.domain.models.rate_limit import DEFAULT_TIERS, DEFAULT_TIER_NAME, Tier, validate_tiers

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".dashcache"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_DATA_FILE = DEFAULT_CONFIG_DIR / "athletes.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "DASHCACHE_"

HOUR_IN_SECONDS = 60 * 60
DAY_IN_SECONDS = 24 * HOUR_IN_SECONDS

DEFAULT_TTLS: Dict[str, int] = {
    "default": HOUR_IN_SECONDS,
    "profile": HOUR_IN_SECONDS,
    "overview": 30 * 60,
    "preferences": 30 * 60,
    "goals": HOUR_IN_SECONDS,
    "activity": 15 * 60,
}

DEFAULT_WARM_GROUPS: Dict[str, List[str]] = {
    "profile": ["full", "meta", "preferences"],
    "overview": ["stats", "activity", "goals"],
}

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from a YAML file and a .env file.

    Priority order (highest to lowest):
    1. Test overrides (set_config_for_testing)
    2. Environment Variables (DASHCACHE_<DOTTED_KEY>)
    3. .env file
    4. YAML configuration file
    5. Default values passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. YAML file (lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file; override=False keeps real environment variables on top
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path and load_dotenv(dotenv_path=dotenv_path, override=False):
        logger.info(f"Loaded environment variables from: {dotenv_path}")

    _loaded = True
    logger.debug("Configuration loading process completed.")


def reset_configuration() -> None:
    """Forgets loaded configuration so the next access reloads it."""
    global _config, _loaded
    _config = {}
    _loaded = False


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def env_var_name(key: str) -> str:
    return ENV_PREFIX + key.upper().replace('.', '_')


def _coerce(value: str) -> Any:
    """Converts common string forms from the environment to Python types."""
    lowered = value.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    try:
        return float(value) if '.' in value else int(value)
    except ValueError:
        return value


def _lookup(data: Dict[str, Any], key: str) -> Tuple[bool, Any]:
    """Finds a dotted key, first as a literal key, then as a nested path."""
    if key in data:
        return True, data[key]
    node: Any = data
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return False, None
        node = node[part]
    return True, node


def get_config(key: str, default: Any = None) -> Any:
    """Gets a configuration value by dotted key (e.g. 'monitoring.sampling_rate').

    Args:
        key: The configuration key.
        default: Value returned when the key is not configured anywhere.

    Returns:
        The configuration value.
    """
    found, value = _lookup(_test_config, key)
    if found:
        return value

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    load_configuration()
    found, value = _lookup(_config, key)
    if found:
        return value

    logger.debug(f"Config key '{key}' not found. Returning default: {default}")
    return default


def set_config(key: str, value: Any) -> None:
    """Sets a configuration value in memory for the rest of the process."""
    load_configuration()
    _config[key] = value
    logger.debug(f"Config set: {key}={value}")


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Sets configuration values that override every other source."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clears all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# --- Typed settings ---

@dataclass
class CacheSettings:
    default_ttl: int = HOUR_IN_SECONDS
    group: str = "athlete_dashboard"
    ttl: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TTLS))
    memory_max_items: int = 1000
    disk_dir: str = str(DEFAULT_CONFIG_DIR / "durable")
    disk_timeout: float = 1.0
    single_flight: bool = False
    failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN

    def ttl_for(self, name: str) -> int:
        return int(self.ttl.get(name, self.ttl.get("default", self.default_ttl)))


@dataclass
class RateLimitSettings:
    tiers: Tuple[Tier, ...] = DEFAULT_TIERS
    default_tier: str = DEFAULT_TIER_NAME
    failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN
    key_prefix: str = "rate_limit"


@dataclass
class AlertThresholds:
    hit_rate: float = 0.8        # Alert if hit rate falls below 80%
    miss_rate: float = 0.2       # Alert if miss rate exceeds 20%
    memory_usage: float = 0.9    # Alert if memory usage exceeds 90% of the limit
    response_time: float = 500.0  # Alert if a lookup takes longer than 500ms


@dataclass
class AlertChannelToggles:
    log: bool = True
    webhook: bool = False
    admin_notice: bool = True
    email: bool = False


@dataclass
class MonitoringSettings:
    enabled: bool = True
    log_stats: bool = True
    sampling_rate: float = 0.1
    min_samples: int = 100
    thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    stats_retention_days: int = 7
    alert_cooldown: int = HOUR_IN_SECONDS
    channels: AlertChannelToggles = field(default_factory=AlertChannelToggles)
    webhook_url: str = ""
    webhook_timeout: float = 5.0
    email_recipients: List[str] = field(default_factory=list)
    smtp_host: str = "localhost"
    smtp_port: int = 25
    memory_limit_bytes: Optional[int] = None

    @property
    def retention_seconds(self) -> int:
        return self.stats_retention_days * DAY_IN_SECONDS

    def validate(self) -> "MonitoringSettings":
        """Raises ConfigurationError for values the monitor cannot work with."""
        if not 0.0 <= self.sampling_rate <= 1.0:
            raise ConfigurationError(f"monitoring.sampling_rate must be within 0.0-1.0, got {self.sampling_rate}")
        for name in ("hit_rate", "miss_rate", "memory_usage"):
            value = getattr(self.thresholds, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"monitoring.alert_thresholds.{name} must be within 0.0-1.0, got {value}")
        if self.thresholds.response_time <= 0:
            raise ConfigurationError("monitoring.alert_thresholds.response_time must be positive")
        if self.min_samples < 1:
            raise ConfigurationError("monitoring.min_samples must be at least 1")
        if self.alert_cooldown < 0 or self.stats_retention_days < 1:
            raise ConfigurationError("monitoring.alert_cooldown must be >= 0 and stats_retention >= 1 day")
        return self


@dataclass
class WarmSettings:
    enabled: bool = True
    on_login: bool = True
    on_cron: bool = True
    priority_users: bool = True
    max_users_per_job: int = 50
    activity_threshold: int = DAY_IN_SECONDS
    warm_groups: Dict[str, List[str]] = field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_WARM_GROUPS.items()})
    data_file: str = str(DEFAULT_DATA_FILE)


@dataclass
class CronSettings:
    warm_cache: str = "fifteen_minutes"
    log_stats: str = "hourly"
    cleanup: str = "daily"


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    file: Optional[str] = None


@dataclass
class Settings:
    cache: CacheSettings = field(default_factory=CacheSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    warm_cache: WarmSettings = field(default_factory=WarmSettings)
    cron: CronSettings = field(default_factory=CronSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _as_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(',') if item.strip()]
    return [str(item) for item in value]


def _parse_tiers(raw: Any) -> Tuple[Tier, ...]:
    if not raw:
        return DEFAULT_TIERS
    if not isinstance(raw, dict):
        raise ConfigurationError("rate_limit.tiers must be a mapping of tier name to {requests, window}")
    tiers = []
    for name, limits in raw.items():
        try:
            tiers.append(Tier(str(name), int(limits["requests"]), int(limits["window"])))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid settings for tier '{name}': {limits!r}") from e
    return tuple(tiers)


def load_settings() -> Settings:
    """Builds and validates the Settings tree from the configuration sources.

    Raises:
        ConfigurationError: If any value is missing its expected shape or range.
    """
    defaults = Settings()
    try:
        cache = CacheSettings(
            default_ttl=int(get_config('cache.default_ttl', defaults.cache.default_ttl)),
            group=str(get_config('cache.group', defaults.cache.group)),
            ttl={**DEFAULT_TTLS, **(get_config('cache.ttl', {}) or {})},
            memory_max_items=int(get_config('cache.memory_max_items', defaults.cache.memory_max_items)),
            disk_dir=str(get_config('cache.disk_dir', defaults.cache.disk_dir)),
            disk_timeout=float(get_config('cache.disk_timeout', defaults.cache.disk_timeout)),
            single_flight=_as_bool(get_config('cache.single_flight', defaults.cache.single_flight)),
            failure_policy=FailurePolicy.parse(get_config('cache.failure_policy', defaults.cache.failure_policy)),
        )

        tiers = _parse_tiers(get_config('rate_limit.tiers'))
        rate_limit = RateLimitSettings(
            tiers=tiers,
            default_tier=str(get_config('rate_limit.default_tier', defaults.rate_limit.default_tier)),
            failure_policy=FailurePolicy.parse(
                get_config('rate_limit.failure_policy', defaults.rate_limit.failure_policy)
            ),
            key_prefix=str(get_config('rate_limit.key_prefix', defaults.rate_limit.key_prefix)),
        )

        m = defaults.monitoring
        memory_limit = get_config('monitoring.memory_limit_bytes', m.memory_limit_bytes)
        monitoring = MonitoringSettings(
            enabled=_as_bool(get_config('monitoring.enabled', m.enabled)),
            log_stats=_as_bool(get_config('monitoring.log_stats', m.log_stats)),
            sampling_rate=float(get_config('monitoring.sampling_rate', m.sampling_rate)),
            min_samples=int(get_config('monitoring.min_samples', m.min_samples)),
            thresholds=AlertThresholds(
                hit_rate=float(get_config('monitoring.alert_thresholds.hit_rate', m.thresholds.hit_rate)),
                miss_rate=float(get_config('monitoring.alert_thresholds.miss_rate', m.thresholds.miss_rate)),
                memory_usage=float(get_config('monitoring.alert_thresholds.memory_usage', m.thresholds.memory_usage)),
                response_time=float(get_config('monitoring.alert_thresholds.response_time', m.thresholds.response_time)),
            ),
            stats_retention_days=int(get_config('monitoring.stats_retention', m.stats_retention_days)),
            alert_cooldown=int(get_config('monitoring.alert_cooldown', m.alert_cooldown)),
            channels=AlertChannelToggles(
                log=_as_bool(get_config('monitoring.alert_channels.log', m.channels.log)),
                webhook=_as_bool(get_config('monitoring.alert_channels.webhook', m.channels.webhook)),
                admin_notice=_as_bool(get_config('monitoring.alert_channels.admin_notice', m.channels.admin_notice)),
                email=_as_bool(get_config('monitoring.alert_channels.email', m.channels.email)),
            ),
            webhook_url=str(get_config('monitoring.alert_recipients.webhook_url', m.webhook_url) or ""),
            webhook_timeout=float(get_config('monitoring.webhook_timeout', m.webhook_timeout)),
            email_recipients=_as_list(get_config('monitoring.alert_recipients.email', m.email_recipients)),
            smtp_host=str(get_config('monitoring.smtp_host', m.smtp_host)),
            smtp_port=int(get_config('monitoring.smtp_port', m.smtp_port)),
            memory_limit_bytes=int(memory_limit) if memory_limit else None,
        )

        w = defaults.warm_cache
        warm_cache = WarmSettings(
            enabled=_as_bool(get_config('warm_cache.enabled', w.enabled)),
            on_login=_as_bool(get_config('warm_cache.on_login', w.on_login)),
            on_cron=_as_bool(get_config('warm_cache.on_cron', w.on_cron)),
            priority_users=_as_bool(get_config('warm_cache.priority_users', w.priority_users)),
            max_users_per_job=int(get_config('warm_cache.max_users_per_job', w.max_users_per_job)),
            data_file=str(get_config('warm_cache.data_file', w.data_file)),
            activity_threshold=int(get_config('warm_cache.activity_threshold', w.activity_threshold)),
            warm_groups={
                str(group): _as_list(kinds)
                for group, kinds in (get_config('warm_groups', w.warm_groups) or {}).items()
            },
        )

        cron = CronSettings(
            warm_cache=str(get_config('cron.warm_cache', defaults.cron.warm_cache)),
            log_stats=str(get_config('cron.log_stats', defaults.cron.log_stats)),
            cleanup=str(get_config('cron.cleanup', defaults.cron.cleanup)),
        )

        log_settings = LoggingSettings(
            level=str(get_config('logging.level', defaults.logging.level)).upper(),
            format=str(get_config('logging.format', defaults.logging.format)),
            file=get_config('logging.file', defaults.logging.file),
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}") from e

    validate_tiers(rate_limit.tiers)
    if rate_limit.default_tier not in {t.name for t in rate_limit.tiers}:
        raise ConfigurationError(f"rate_limit.default_tier '{rate_limit.default_tier}' is not a configured tier")
    monitoring.validate()
    if warm_cache.max_users_per_job < 0:
        raise ConfigurationError("warm_cache.max_users_per_job must not be negative")

    return Settings(
        cache=cache,
        rate_limit=rate_limit,
        monitoring=monitoring,
        warm_cache=warm_cache,
        cron=cron,
        logging=log_settings,
    )
