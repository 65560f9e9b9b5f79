import os
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

# ------------- Defaults -------------

API_URL = "https://api.github.com"
THRESHOLD_DAYS = 60
COPILOT_TEAM_PREFIX = "Team Copilot -"
INACTIVE_USERS_FILE = ".github/scripts/inactive_users.txt"
INACTIVE_USERS_EXPORT = ".github/scripts/inactive_users.csv"
REPORT_DIR = "clean-logs"
MAX_WORKERS = 1
REQUEST_TIMEOUT = 30
SETTLE_DELAY = 2.0

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class ConfigError(Exception):
    pass


def setup_logging(debug: bool = False):
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S"
    )


def parse_reference_date(value: Optional[str]) -> datetime:
    """
    Accepts the scheduler's 'YYYY-MM-DD HH:MM:SS' (UTC) or any ISO 8601 string.
    Returns a timezone-aware UTC datetime; wall clock when value is empty.
    """
    if not value or not value.strip():
        return datetime.now(timezone.utc)
    iso = value.strip().replace(" ", "T", 1).replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        raise ConfigError(f"CURRENT_DATE is not a valid date/time: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    org_name: str
    token: Optional[str] = field(default=None, repr=False)
    app_id: Optional[str] = None
    app_private_key: Optional[str] = field(default=None, repr=False)
    threshold_days: int = THRESHOLD_DAYS
    current_user: Optional[str] = None
    reference_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    dry_run: bool = True
    team_prefix: str = COPILOT_TEAM_PREFIX
    inactive_users_file: str = INACTIVE_USERS_FILE
    inactive_users_export: str = INACTIVE_USERS_EXPORT
    report_dir: str = REPORT_DIR
    max_workers: int = MAX_WORKERS
    request_timeout: float = REQUEST_TIMEOUT
    settle_delay: float = SETTLE_DELAY
    api_url: str = API_URL
    github_output: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        org = (env.get("ORG_NAME") or "").strip()
        token = env.get("GITHUB_TOKEN") or env.get("GITHUB_PAT")

        settings = cls(
            org_name=org,
            token=token.strip() if token else None,
            app_id=env.get("GITHUB_APP_ID") or None,
            app_private_key=env.get("GITHUB_APP_PRIVATE_KEY") or None,
            threshold_days=_int(env, "THRESHOLD_DAYS", THRESHOLD_DAYS),
            current_user=(env.get("CURRENT_USER") or "").strip() or None,
            reference_date=parse_reference_date(env.get("CURRENT_DATE")),
            # anything other than an explicit "false" keeps the safe default
            dry_run=(env.get("DRY_RUN") or "true").strip().lower() != "false",
            team_prefix=env.get("COPILOT_TEAM_PREFIX") or COPILOT_TEAM_PREFIX,
            inactive_users_file=env.get("INACTIVE_USERS_FILE") or INACTIVE_USERS_FILE,
            inactive_users_export=env.get("INACTIVE_USERS_EXPORT") or INACTIVE_USERS_EXPORT,
            report_dir=env.get("REPORT_DIR") or REPORT_DIR,
            max_workers=_int(env, "MAX_WORKERS", MAX_WORKERS, minimum=1),
            request_timeout=_float(env, "REQUEST_TIMEOUT", REQUEST_TIMEOUT),
            settle_delay=_float(env, "SETTLE_DELAY", SETTLE_DELAY),
            api_url=(env.get("GITHUB_API_URL") or API_URL).rstrip("/"),
            github_output=env.get("GITHUB_OUTPUT") or None,
        )
        return settings

    def override(self, **changes) -> "Settings":
        """Returns a copy with the non-None values of ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def validate(self) -> "Settings":
        if not self.org_name:
            raise ConfigError("ORG_NAME is not set.")
        if not self.token and not (self.app_id and self.app_private_key):
            raise ConfigError("Set GITHUB_TOKEN, or GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY.")
        if not self.current_user:
            # the acting identity is never audited nor revoked
            raise ConfigError("CURRENT_USER is not set.")
        if self.threshold_days < 0:
            raise ConfigError(f"threshold_days must be >= 0, got {self.threshold_days}")
        return self

    def is_current_user(self, login: Optional[str]) -> bool:
        # GitHub logins are case-insensitive
        if not self.current_user or not login:
            return False
        return login.casefold() == self.current_user.casefold()

    def describe(self) -> Dict[str, str]:
        return {
            "org": self.org_name,
            "threshold_days": str(self.threshold_days),
            "current_user": self.current_user or "-",
            "reference_date": self.reference_date.isoformat(),
            "mode": "DRY RUN" if self.dry_run else "PRODUCTION",
        }
