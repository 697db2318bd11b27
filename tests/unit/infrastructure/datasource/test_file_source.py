import json

import pytest

from dashcache.domain.errors import UnknownCacheKindError
from dashcache.infrastructure.datasource.file_source import FileAthleteDataSource

ATHLETES = """
athletes:
  "42":
    username: jo
    email: jo@example.com
    first_name: Jo
    last_name: Runner
    last_activity: 1700000500
    meta: {age: 31, height: 172, weight: 64.5}
    preferences: {notifications: email, timezone: UTC, units: metric}
    overview:
      workouts_completed: 12
      active_programs: [base, strength]
      nutrition_score: 80
      goals: [{title: sub-3 marathon}]
  "7":
    username: sam
    last_activity: 1699990000
  "9":
    username: ana
    last_activity: 1700000900
"""


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "athletes.yaml"
    path.write_text(ATHLETES)
    return FileAthleteDataSource(path)


def test_profile_kinds(source: FileAthleteDataSource):
    full = source.fetch("42", "profile", "full")
    assert full["firstName"] == "Jo"
    assert full["meta"]["weight"] == 64.5
    assert source.fetch("42", "profile", "preferences")["units"] == "metric"
    assert source.fetch("42", "profile", "meta")["medicalNotes"] == ""


def test_overview_kinds(source: FileAthleteDataSource):
    assert source.fetch("42", "overview", "stats") == {
        "workouts_completed": 12,
        "active_programs": 2,
        "nutrition_score": 80,
    }
    assert source.fetch("42", "overview", "goals") == [{"title": "sub-3 marathon"}]
    assert source.fetch("42", "overview", "activity") == []


def test_unknown_athlete_has_empty_profile(source: FileAthleteDataSource):
    assert source.fetch("1000", "profile", "full") == {}


def test_unknown_kind_raises(source: FileAthleteDataSource):
    with pytest.raises(UnknownCacheKindError):
        source.fetch("42", "overview", "nutrition")
    with pytest.raises(UnknownCacheKindError):
        source.fetch("42", "workouts", "history")


def test_active_identities_most_recent_first(source: FileAthleteDataSource):
    assert source.active_identities(since=1700000000, limit=10) == ["9", "42"]
    assert source.active_identities(since=0, limit=1) == ["9"]


def test_json_documents_are_accepted(tmp_path):
    path = tmp_path / "athletes.json"
    path.write_text(json.dumps({"athletes": {"5": {"username": "lee", "last_activity": 10}}}))
    source = FileAthleteDataSource(path)
    assert source.fetch("5", "profile", "full")["username"] == "lee"


def test_missing_file_has_no_athletes(tmp_path):
    source = FileAthleteDataSource(tmp_path / "absent.yaml")
    assert source.active_identities(since=0, limit=10) == []
