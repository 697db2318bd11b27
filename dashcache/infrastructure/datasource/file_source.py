"""File-backed athlete data source.

Reads a YAML (or JSON) document of athlete records and shapes them into
the profile and overview cache kinds. Used by the CLI so the warmer can
run without the dashboard application around it.

Document layout::

    athletes:
      "42":
        username: jo
        email: jo@example.com
        first_name: Jo
        last_name: Runner
        last_activity: 1700000000
        meta: {age: 31, height: 172, weight: 64.5, medical_notes: ""}
        preferences: {notifications: email, timezone: UTC, units: metric}
        overview:
          workouts_completed: 12
          active_programs: [base, strength]
          nutrition_score: 80
          recent_activity: []
          goals: []
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from dashcache.domain.errors import UnknownCacheKindError
from dashcache.domain.interfaces.data_source import AthleteDataSource

logger = logging.getLogger(__name__)


class FileAthleteDataSource(AthleteDataSource):
    """AthleteDataSource over a YAML/JSON file, reloaded when it changes."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._mtime: float = -1.0
        self._athletes: Dict[str, Dict[str, Any]] = {}

    def _records(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            try:
                mtime = self.path.stat().st_mtime
            except FileNotFoundError:
                logger.warning(f"Athlete data file not found: {self.path}")
                return {}
            if mtime != self._mtime:
                with open(self.path, 'r', encoding='utf-8') as f:
                    document = yaml.safe_load(f) or {}
                athletes = document.get("athletes", {}) if isinstance(document, dict) else {}
                self._athletes = {str(k): v or {} for k, v in athletes.items()}
                self._mtime = mtime
                logger.debug(f"Loaded {len(self._athletes)} athletes from {self.path}")
            return self._athletes

    def _athlete(self, identity: str) -> Dict[str, Any]:
        return self._records().get(str(identity), {})

    def fetch(self, identity: str, group: str, kind: str) -> Any:
        athlete = self._athlete(identity)
        if group == "profile":
            return self._profile(identity, athlete, kind)
        if group == "overview":
            return self._overview(athlete, kind)
        raise UnknownCacheKindError(group, kind)

    def _profile(self, identity: str, athlete: Dict[str, Any], kind: str) -> Any:
        if kind == "full":
            if not athlete:
                return {}
            return {
                "id": identity,
                "username": athlete.get("username", ""),
                "email": athlete.get("email", ""),
                "firstName": athlete.get("first_name", ""),
                "lastName": athlete.get("last_name", ""),
                "meta": self._profile(identity, athlete, "meta"),
            }
        if kind == "meta":
            meta = athlete.get("meta") or {}
            return {
                "age": int(meta.get("age") or 0),
                "height": float(meta.get("height") or 0),
                "weight": float(meta.get("weight") or 0),
                "medicalNotes": meta.get("medical_notes", ""),
            }
        if kind == "preferences":
            prefs = athlete.get("preferences") or {}
            return {
                "notifications": prefs.get("notifications"),
                "timezone": prefs.get("timezone"),
                "units": prefs.get("units"),
            }
        raise UnknownCacheKindError("profile", kind)

    def _overview(self, athlete: Dict[str, Any], kind: str) -> Any:
        overview = athlete.get("overview") or {}
        if kind == "stats":
            return {
                "workouts_completed": int(overview.get("workouts_completed") or 0),
                "active_programs": len(overview.get("active_programs") or []),
                "nutrition_score": int(overview.get("nutrition_score") or 0),
            }
        if kind == "activity":
            return overview.get("recent_activity") or []
        if kind == "goals":
            return overview.get("goals") or []
        raise UnknownCacheKindError("overview", kind)

    def active_identities(self, since: float, limit: int) -> List[str]:
        active = [
            (float(record.get("last_activity") or 0), identity)
            for identity, record in self._records().items()
            if float(record.get("last_activity") or 0) > since
        ]
        active.sort(reverse=True)
        return [identity for _, identity in active[:limit]]
