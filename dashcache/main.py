"""Main entry point for the dashcache admin CLI.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
and defines the operator commands for the cache, rate limiter, monitor and warmer.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional

import typer
from typing_extensions import Annotated

# --- Setup Logging Early ---
# Use basic config until setup_logging is called with the configured settings
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# --- Core Layer ---
from dashcache.core.services.cache_monitor import CacheMonitor
from dashcache.core.services.cache_service import CacheService
from dashcache.core.services.cache_warmer import CacheWarmer
from dashcache.core.services.rate_limiter import RateLimiter

# --- Domain Layer ---
from dashcache.domain.errors import DashCacheError
from dashcache.domain.interfaces.alert_channel import AlertChannel

# --- Infrastructure Layer ---
# Config
from dashcache.infrastructure.config.settings import (
    MonitoringSettings, Settings, load_configuration, load_settings, reset_configuration, set_config,
)
# UI
from dashcache.infrastructure.cli.display import ConsoleDisplay
# Stores
from dashcache.infrastructure.cache.disk_store import DiskStore
from dashcache.infrastructure.cache.memory_store import MemoryStore
# Data
from dashcache.infrastructure.datasource.file_source import FileAthleteDataSource
# Monitoring
from dashcache.infrastructure.monitoring.alert_channels import (
    AdminNoticeChannel, EmailAlertChannel, LogAlertChannel, WebhookAlertChannel,
)
from dashcache.infrastructure.monitoring.logger_setup import setup_logging
from dashcache.infrastructure.monitoring.system_probe import ProcessMemoryProbe
# Scheduling
from dashcache.infrastructure.scheduling.scheduler import PeriodicScheduler


def build_alert_channels(settings: MonitoringSettings) -> List[AlertChannel]:
    """Instantiates the alert channels enabled in the monitoring settings."""
    channels: List[AlertChannel] = []
    toggles = settings.channels
    if toggles.log:
        channels.append(LogAlertChannel())
    if toggles.admin_notice:
        channels.append(AdminNoticeChannel())
    if toggles.webhook:
        if settings.webhook_url:
            channels.append(WebhookAlertChannel(settings.webhook_url, timeout=settings.webhook_timeout))
        else:
            logger.warning("Webhook alerts enabled but no webhook URL configured; channel disabled.")
    if toggles.email:
        if settings.email_recipients:
            channels.append(EmailAlertChannel(
                settings.email_recipients, smtp_host=settings.smtp_host, smtp_port=settings.smtp_port
            ))
        else:
            logger.warning("Email alerts enabled but no recipients configured; channel disabled.")
    return channels


def build_scheduler(dependencies: Dict[str, Any]) -> PeriodicScheduler:
    """Registers the warming and stats maintenance jobs."""
    settings: Settings = dependencies['settings']
    scheduler = PeriodicScheduler(state_store=dependencies['durable_store'])

    warm = settings.warm_cache
    if warm.enabled and warm.on_cron and warm.priority_users:
        scheduler.register("warm_cache", settings.cron.warm_cache, dependencies['cache_warmer'].warm_priority_identities)
    if settings.monitoring.enabled and settings.monitoring.log_stats:
        scheduler.register("log_stats", settings.cron.log_stats, dependencies['cache_monitor'].log_stats)
    scheduler.register("cleanup_stats", settings.cron.cleanup, dependencies['cache_monitor'].cleanup_old_stats)
    return scheduler


# --- Dependency Injection Container (Manual) ---

def create_dependencies(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.
    """
    logger.info("Initializing application dependencies...")
    dependencies: Dict[str, Any] = {'ui': ConsoleDisplay()}
    try:
        # 1. Load Configuration First
        if settings is None:
            load_configuration()
            settings = load_settings()
        setup_logging(log_level=settings.logging.level, log_format=settings.logging.format, log_file=settings.logging.file)
        dependencies['settings'] = settings
        logger.info("Configuration and logging initialized.")

        # 2. Stores
        dependencies['fast_store'] = MemoryStore(max_items=settings.cache.memory_max_items)
        dependencies['durable_store'] = DiskStore(settings.cache.disk_dir, timeout=settings.cache.disk_timeout)

        # 3. Core Services
        dependencies['cache_service'] = CacheService(
            fast_store=dependencies['fast_store'],
            durable_store=dependencies['durable_store'],
            default_ttl=settings.cache.default_ttl,
            default_group=settings.cache.group,
            failure_policy=settings.cache.failure_policy,
            single_flight=settings.cache.single_flight,
        )
        dependencies['cache_monitor'] = CacheMonitor(
            store=dependencies['durable_store'],
            settings=settings.monitoring,
            channels=build_alert_channels(settings.monitoring),
            memory_probe=ProcessMemoryProbe(settings.monitoring.memory_limit_bytes),
        )
        if settings.monitoring.enabled:
            dependencies['cache_service'].subscribe(dependencies['cache_monitor'])
        else:
            logger.info("Cache monitoring disabled.")

        dependencies['rate_limiter'] = RateLimiter(
            counter_store=dependencies['durable_store'],
            meta_store=dependencies['durable_store'],
            tiers=settings.rate_limit.tiers,
            default_tier=settings.rate_limit.default_tier,
            failure_policy=settings.rate_limit.failure_policy,
            key_prefix=settings.rate_limit.key_prefix,
        )
        dependencies['cache_warmer'] = CacheWarmer(
            cache_service=dependencies['cache_service'],
            data_source=FileAthleteDataSource(settings.warm_cache.data_file),
            settings=settings.warm_cache,
            cache_settings=settings.cache,
        )
        logger.info("Core services initialized.")

        # 4. Scheduler
        dependencies['scheduler'] = build_scheduler(dependencies)

        logger.info("All dependencies initialized successfully.")
        return dependencies

    except DashCacheError as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        dependencies['ui'].display_error(f"Application Initialization Failed: {e}")
        sys.exit(1)


# This dictionary holds the single instances of our services, built on first use
_dependencies: Optional[Dict[str, Any]] = None


def get_dependencies() -> Dict[str, Any]:
    global _dependencies
    if _dependencies is None:
        _dependencies = create_dependencies()
    return _dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="dashcache",
    help="dashcache: admin tooling for the athlete dashboard cache, rate limiter and monitor.",
    add_completion=False,
)


# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Runs a coroutine from a sync Typer command."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        logger.info("Interrupted; scheduler stopped.")
        return None


# --- CLI Commands ---

@app.command()
def stats(
    history: Annotated[bool, typer.Option("--history", help="Also show the persisted stats history.")] = False,
):
    """Show cache statistics."""
    deps = get_dependencies()
    ui: ConsoleDisplay = deps['ui']
    ui.display_stats(deps['cache_monitor'].get_current_stats(), deps['cache_service'].get_stats())
    if history:
        ui.display_history(deps['cache_monitor'].get_stats_history())


@app.command()
def warm(
    identity: Annotated[str, typer.Argument(help="Athlete user id to warm.")],
):
    """Warm every configured cache kind for one athlete."""
    deps = get_dependencies()
    report = deps['cache_warmer'].warm_identity(identity)
    deps['ui'].display_warm_reports([report])
    if not report.ok:
        raise typer.Exit(code=1)


@app.command(name="warm-priority")
def warm_priority():
    """Warm recently active athletes, up to the per-job cap."""
    deps = get_dependencies()
    reports = deps['cache_warmer'].warm_priority_identities()
    deps['ui'].display_warm_reports(reports)


@app.command()
def tier(
    identity: Annotated[str, typer.Argument(help="Rate limit identity, e.g. user_42.")],
    new_tier: Annotated[Optional[str], typer.Argument(help="Tier to assign.")] = None,
):
    """Show or change the rate limit tier of an identity."""
    deps = get_dependencies()
    limiter: RateLimiter = deps['rate_limiter']
    ui: ConsoleDisplay = deps['ui']

    if new_tier is not None and not limiter.update_user_tier(identity, new_tier):
        ui.display_error(f"Could not assign tier '{new_tier}'. Known tiers: {', '.join(limiter.tiers)}")
        raise typer.Exit(code=1)

    current = limiter.get_user_tier(identity)
    ui.display_info(
        f"{identity}: tier '{current.name}', {limiter.get_remaining(identity)}/{current.request_limit} "
        f"requests left in this {current.window_seconds}s window"
    )


@app.command()
def check(
    identity: Annotated[str, typer.Argument(help="Rate limit identity, e.g. user_42.")],
):
    """Count one request against an identity's quota. Exits 1 when rate limited."""
    deps = get_dependencies()
    limiter: RateLimiter = deps['rate_limiter']
    allowed = limiter.check_limit(identity)
    deps['ui'].display_rate_limit(identity, limiter.get_user_tier(identity).name, limiter.get_rate_limit_headers(), allowed)
    if not allowed:
        raise typer.Exit(code=1)


@app.command(name="clear-group")
def clear_group(
    group: Annotated[Optional[str], typer.Argument(help="Cache group; defaults to the configured group.")] = None,
):
    """Remove every entry of a cache group from both tiers."""
    deps = get_dependencies()
    cache: CacheService = deps['cache_service']
    cache.clear_group(group)
    deps['ui'].display_info(f"Cleared cache group '{group or cache.default_group}'.")


@app.command()
def invalidate(
    user_id: Annotated[str, typer.Argument(help="User id whose cached data is dropped.")],
    kind: Annotated[Optional[str], typer.Option("--kind", "-k", help="Only this kind (profile, preferences, settings, meta).")] = None,
):
    """Invalidate a user's cached data."""
    deps = get_dependencies()
    cache: CacheService = deps['cache_service']
    ui: ConsoleDisplay = deps['ui']
    if kind is None:
        cache.invalidate_all(user_id)
        ui.display_info(f"Invalidated all cached data for user {user_id}.")
        return
    try:
        removed = cache.invalidate_one(user_id, kind)
    except ValueError as e:
        ui.display_error(str(e))
        raise typer.Exit(code=1)
    ui.display_info(f"Invalidated '{kind}' for user {user_id}." if removed else f"No cached '{kind}' for user {user_id}.")


@app.command(name="cleanup-stats")
def cleanup_stats():
    """Drop stats snapshots past the retention period."""
    deps = get_dependencies()
    removed = deps['cache_monitor'].cleanup_old_stats()
    deps['ui'].display_info(f"Removed {removed} expired stats snapshots.")


@app.command(name="run-scheduler")
def run_scheduler(
    once: Annotated[bool, typer.Option("--once", help="Run due jobs once and exit.")] = False,
):
    """Run the periodic warming and stats jobs."""
    deps = get_dependencies()
    scheduler: PeriodicScheduler = deps['scheduler']
    ui: ConsoleDisplay = deps['ui']
    if once:
        ran = run_async(scheduler.run_pending()) or []
        ui.display_info(f"Ran jobs: {', '.join(ran)}" if ran else "No jobs were due.")
        return
    ui.display_info(f"Running {len(scheduler.jobs)} jobs; press Ctrl+C to stop.")
    run_async(scheduler.run_forever())


@app.callback()
def main_callback(
    config: Annotated[Optional[Path], typer.Option("--config", "-c", exists=True, dir_okay=False, help="YAML configuration file.")] = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="Override logging.level.")] = None,
):
    """Admin tooling for the athlete dashboard cache."""
    if config is not None:
        reset_configuration()
        load_configuration(config_file=config)
    if log_level:
        set_config('logging.level', log_level.upper())


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    logger.debug("Starting dashcache...")
    app()


if __name__ == "__main__":
    cli_entry_point()
