"""Tests for classification, urgency sorting and the inactive users file."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from copilot_records import (
    ACTIVE,
    INACTIVE,
    NEVER,
    NEVER_USED,
    NO_ACTIVITY,
    NO_TEAMS,
    InactiveUser,
    classify,
    days_inactive,
    load_inactive_users,
    parse_github_time,
    save_inactive_users,
    sort_by_urgency,
    threshold_date,
)


class TestClassify:
    def test_no_activity(self, reference_date) -> None:
        assert classify(None, threshold_date(reference_date, 60)) == NO_ACTIVITY

    def test_before_threshold_is_inactive(self, reference_date) -> None:
        cutoff = threshold_date(reference_date, 60)
        assert classify(cutoff - timedelta(seconds=1), cutoff) == INACTIVE

    def test_at_threshold_is_active(self, reference_date) -> None:
        cutoff = threshold_date(reference_date, 60)
        assert classify(cutoff, cutoff) == ACTIVE
        assert classify(reference_date, cutoff) == ACTIVE


class TestDaysInactive:
    def test_floor_of_elapsed_days(self, reference_date) -> None:
        threshold = 60
        last = reference_date - timedelta(days=threshold + 5)
        assert days_inactive(last, reference_date) == threshold + 5

    def test_partial_day_is_floored(self, reference_date) -> None:
        last = reference_date - timedelta(days=3, hours=23)
        assert days_inactive(last, reference_date) == 3

    def test_never_used(self, reference_date) -> None:
        assert days_inactive(None, reference_date) == NEVER_USED


class TestFromActivity:
    def test_example_users(self, reference_date) -> None:
        cutoff = threshold_date(reference_date, 30)
        a = InactiveUser.from_activity("a", None, reference_date, cutoff)
        b = InactiveUser.from_activity("b", reference_date - timedelta(days=31), reference_date, cutoff,
                                       teams=["Team Copilot - Eng", "Backend"])

        assert a.status == NO_ACTIVITY
        assert a.days_inactive == NEVER_USED
        assert a.last_used == NEVER
        assert a.team == NO_TEAMS

        assert b.status == INACTIVE
        assert b.days_inactive == 31
        assert b.team == "Team Copilot - Eng, Backend"
        assert b.last_used == "2026-09-18T12:00:00.000Z"

    def test_active_user_is_excluded(self, reference_date) -> None:
        cutoff = threshold_date(reference_date, 30)
        assert InactiveUser.from_activity("c", reference_date - timedelta(days=2), reference_date, cutoff) is None


class TestSorting:
    def test_never_used_first_then_descending(self) -> None:
        users = [
            InactiveUser("five", INACTIVE, days_inactive=5),
            InactiveUser("never", NO_ACTIVITY),
            InactiveUser("twenty", INACTIVE, days_inactive=20),
        ]
        assert [u.days_inactive for u in sort_by_urgency(users)] == [NEVER_USED, 20, 5]


class TestParseGithubTime:
    def test_zulu(self) -> None:
        dt = parse_github_time("2026-08-01T10:00:00Z")
        assert dt.utcoffset() == timedelta(0)
        assert (dt.year, dt.month, dt.day, dt.hour) == (2026, 8, 1, 10)

    def test_offset_is_normalised_to_utc(self) -> None:
        dt = parse_github_time("2026-08-01T12:00:00+02:00")
        assert dt.hour == 10

    def test_empty(self) -> None:
        assert parse_github_time(None) is None
        assert parse_github_time("") is None


class TestInactiveUsersFile:
    def test_save_then_load_keeps_records(self, tmp_path) -> None:
        path = str(tmp_path / "nested" / "inactive_users.txt")
        users = [
            InactiveUser("never", NO_ACTIVITY),
            InactiveUser("old", INACTIVE, team="Backend", last_used="2026-01-01T00:00:00.000Z",
                         days_inactive=291),
        ]
        save_inactive_users(users, path)

        with open(path) as f:
            raw = json.load(f)
        assert raw[0] == {"login": "never", "status": "No activity", "team": "No teams",
                          "last_used": "Never", "days_inactive": "Never used"}
        assert load_inactive_users(path) == users

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_inactive_users(str(tmp_path / "missing.txt"))

    def test_not_a_list(self, tmp_path) -> None:
        path = tmp_path / "users.txt"
        path.write_text('{"login": "a"}')
        with pytest.raises(ValueError):
            load_inactive_users(str(path))

    def test_entry_without_login(self, tmp_path) -> None:
        path = tmp_path / "users.txt"
        path.write_text('[{"status": "Inactive"}]')
        with pytest.raises(ValueError):
            load_inactive_users(str(path))

    def test_fields_are_kept_as_stored(self) -> None:
        data = {"login": "a", "status": "Inactive", "team": "", "last_used": "", "days_inactive": "42"}
        user = InactiveUser.from_dict(data)
        assert user.to_dict() == data
