"""Proactive cache population for high-value athletes.

Warms each configured (group, kind) through CacheService.remember, the
same miss path request handlers use, so warmed and lazily computed
values are identical. Failures are isolated per key.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from dashcache.core.services.cache_service import CacheService
from dashcache.domain.errors import UnknownCacheKindError
from dashcache.domain.interfaces.data_source import AthleteDataSource
from dashcache.infrastructure.config.settings import CacheSettings, WarmSettings

logger = logging.getLogger(__name__)


@dataclass
class WarmReport:
    """Outcome of warming one identity."""
    identity: str
    warmed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.failed == 0


class CacheWarmer:
    """Populates per-athlete cache kinds ahead of request-time demand."""

    def __init__(
        self,
        cache_service: CacheService,
        data_source: AthleteDataSource,
        settings: Optional[WarmSettings] = None,
        cache_settings: Optional[CacheSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache_service
        self.data_source = data_source
        self.settings = settings or WarmSettings()
        self.cache_settings = cache_settings or CacheSettings()
        self._clock = clock
        logger.info(
            f"CacheWarmer initialized: groups={list(self.settings.warm_groups)}, "
            f"max_users_per_job={self.settings.max_users_per_job}"
        )

    def _warm_kind(self, identity: str, group: str, kind: str, report: WarmReport) -> None:
        key = self.cache.user_key(identity, kind)
        ttl = self.cache_settings.ttl_for(group)
        try:
            self.cache.remember(key, lambda: self.data_source.fetch(identity, group, kind), ttl)
            report.warmed += 1
        except UnknownCacheKindError as e:
            logger.warning(f"Skipping warm of {key}: {e}")
            report.skipped += 1
        except Exception as e:
            logger.error(f"Failed to warm {key} ({group}/{kind}): {e}", exc_info=True)
            report.failed += 1
            report.errors[f"{group}/{kind}"] = str(e)

    def warm_identity(self, identity: str) -> WarmReport:
        """Warms every configured group and kind for one athlete."""
        report = WarmReport(identity=str(identity))
        for group, kinds in self.settings.warm_groups.items():
            for kind in kinds:
                self._warm_kind(str(identity), group, kind, report)
        logger.debug(
            f"Warmed cache for {identity}: warmed={report.warmed} failed={report.failed} skipped={report.skipped}"
        )
        return report

    def warm_priority_identities(self) -> List[WarmReport]:
        """Warms athletes active within the activity threshold, up to the per-job cap."""
        if not self.settings.enabled or not self.settings.priority_users:
            logger.debug("Priority cache warming disabled; skipping.")
            return []

        limit = self.settings.max_users_per_job
        since = self._clock() - self.settings.activity_threshold
        try:
            identities = self.data_source.active_identities(since, limit)
        except Exception as e:
            logger.error(f"Could not list priority athletes for warming: {e}", exc_info=True)
            return []

        reports = [self.warm_identity(identity) for identity in identities[:limit]]
        failed = sum(1 for r in reports if not r.ok)
        logger.info(f"Priority cache warming finished: {len(reports)} athletes, {failed} with failures")
        return reports

    def on_login(self, identity: str) -> Optional[WarmReport]:
        """Login hook; warms the athlete when login warming is enabled."""
        if not self.settings.enabled or not self.settings.on_login:
            return None
        return self.warm_identity(identity)
