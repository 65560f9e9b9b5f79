import os
import json
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Union

ACTIVE = "Active"
INACTIVE = "Inactive"
NO_ACTIVITY = "No activity"

NEVER = "Never"
NEVER_USED = "Never used"
NO_TEAMS = "No teams"

TABLE_COLUMNS = ["User Login", "Status", "Days Inactive", "Teams", "Last Usage Date"]

DaysInactive = Union[int, str]


def parse_github_time(value: Optional[str]) -> Optional[datetime]:
    """ISO 8601 from the API ('...Z' or offset) -> aware UTC datetime, None if empty."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_github_time(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def threshold_date(reference_date: datetime, threshold_days: int) -> datetime:
    return reference_date - timedelta(days=threshold_days)


def classify(last_activity_at: Optional[datetime], cutoff: datetime) -> str:
    if last_activity_at is None:
        return NO_ACTIVITY
    if last_activity_at < cutoff:
        return INACTIVE
    return ACTIVE


def days_inactive(last_activity_at: Optional[datetime], reference_date: datetime) -> DaysInactive:
    if last_activity_at is None:
        return NEVER_USED
    return math.floor((reference_date - last_activity_at) / timedelta(days=1))


@dataclass(frozen=True)
class InactiveUser:
    login: str
    status: str
    team: str = NO_TEAMS
    last_used: str = NEVER
    days_inactive: DaysInactive = NEVER_USED

    @classmethod
    def from_activity(cls, login: str, last_activity_at: Optional[datetime],
                      reference_date: datetime, cutoff: datetime,
                      teams: Iterable[str] = ()) -> Optional["InactiveUser"]:
        """Builds the record for a seat holder, None when the seat is still active."""
        status = classify(last_activity_at, cutoff)
        if status == ACTIVE:
            return None
        return cls(
            login=login,
            status=status,
            team=", ".join(teams) or NO_TEAMS,
            last_used=format_github_time(last_activity_at) if last_activity_at else NEVER,
            days_inactive=days_inactive(last_activity_at, reference_date),
        )

    @classmethod
    def from_dict(cls, data: Dict) -> "InactiveUser":
        return cls(
            login=data["login"],
            status=data.get("status", INACTIVE),
            team=data.get("team", NO_TEAMS),
            last_used=data.get("last_used", NEVER),
            days_inactive=data.get("days_inactive", NEVER_USED),
        )

    def to_dict(self) -> Dict:
        return asdict(self)

    def row(self) -> Dict:
        return {
            "User Login": self.login,
            "Status": self.status,
            "Days Inactive": self.days_inactive,
            "Teams": self.team,
            "Last Usage Date": self.last_used,
        }


def urgency_key(user: InactiveUser):
    # never used first, then most days inactive
    if not isinstance(user.days_inactive, int):
        return (0, 0)
    return (1, -user.days_inactive)


def sort_by_urgency(users: Iterable[InactiveUser]) -> List[InactiveUser]:
    return sorted(users, key=urgency_key)


# ------------- Sidecar file -------------

def save_inactive_users(users: List[InactiveUser], path: str):
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump([u.to_dict() for u in users], f, indent=2)


def load_inactive_users(path: str) -> List[InactiveUser]:
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Inactive users file not found: {path}. Please run check-copilot-usage first.")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list of users.")
    for item in data:
        if not isinstance(item, dict) or not item.get("login"):
            raise ValueError(f"{path} has an entry without a login: {item!r}")
    return [InactiveUser.from_dict(item) for item in data]
