import re
import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import jwt
import requests
from requests.adapters import HTTPAdapter, Retry

from copilot_settings import API_URL, REQUEST_TIMEOUT, Settings

LOG = logging.getLogger("copilot-github")

HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
    "User-Agent": "copilot-seat-cleaner",
}
MAX_RATE_LIMIT_RETRIES = 3

# "... is assigned via team Team Copilot - Backend, ..." style 422 messages
ASSIGNED_VIA_TEAM = re.compile(r"assigned via (?:the )?team\s+'?([^',.]+)", re.IGNORECASE)


# ------------- Errors -------------

class GitHubError(Exception):
    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body


class NotFoundError(GitHubError):
    pass


# ------------- Seat revocation result -------------

class RevokeKind(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass(frozen=True)
class RevokeResult:
    kind: RevokeKind
    inherited_via_team: Optional[str] = None
    message: str = ""

    @property
    def removed(self) -> bool:
        return self.kind in (RevokeKind.OK, RevokeKind.NOT_FOUND)


def parse_assigning_team(message: Optional[str]) -> Optional[str]:
    if not message:
        return None
    match = ASSIGNED_VIA_TEAM.search(message)
    if not match:
        return None
    return match.group(1).strip() or None


# ------------- HTTP helpers -------------

def create_session(token: Optional[str] = None) -> requests.Session:
    session = requests.Session()
    retries = Retry(total=5, backoff_factor=1, status_forcelist=[500, 502, 503, 504],
                    raise_on_status=False)
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(HEADERS)
    if token:
        session.headers["Authorization"] = f"Bearer {token}"
    return session


def _redact_headers(h) -> Dict[str, str]:
    redacted = dict(h or {})
    for k in list(redacted.keys()):
        if k.lower() in ("authorization",):
            redacted[k] = "***redacted***"
    return redacted


def _body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def _message(body: Any) -> str:
    if isinstance(body, dict):
        return str(body.get("message") or body)
    return str(body or "")


def generate_jwt(app_id: str, private_key: str) -> str:
    now = int(time.time())
    payload = {
        "iat": now - 60,       # allow small clock skew
        "exp": now + (10 * 60),
        "iss": str(app_id),
    }
    token = jwt.encode(payload, private_key, algorithm="RS256")
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    LOG.debug("Generated JWT for app_id=%s (len=%d)", app_id, len(token))
    return token


# ------------- Client -------------

class GitHubClient:
    """
    Thin wrapper over the REST endpoints the cleaner needs.

    Read calls raise GitHubError on non-2xx answers (NotFoundError for 404),
    except get_member_copilot_status which maps 404 to None. The two mutating
    calls never raise for HTTP failures: revoke_org_copilot_seat returns a
    RevokeResult and remove_team_membership returns a bool.
    """

    def __init__(self, token: Optional[str] = None, api_url: str = API_URL,
                 timeout: float = REQUEST_TIMEOUT, session: Optional[requests.Session] = None):
        self.session = session or create_session(token)
        if session is not None and token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubClient":
        if settings.token:
            return cls(settings.token, api_url=settings.api_url, timeout=settings.request_timeout)
        client = cls(api_url=settings.api_url, timeout=settings.request_timeout)
        client.authenticate_app(settings.app_id, settings.app_private_key, settings.org_name)
        return client

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.api_url}{path}"

    def _req(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self._url(path)
        LOG.debug("HTTP %s %s headers=%s", method, url, _redact_headers(self.session.headers))
        for attempt in range(1, MAX_RATE_LIMIT_RETRIES + 1):
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            LOG.debug("-> %s %s (attempt %d) status=%d ratelimit-remaining=%s",
                      method, url, attempt, resp.status_code, resp.headers.get("X-RateLimit-Remaining"))

            rate_limited = resp.status_code == 429 or (
                resp.status_code == 403 and "rate limit" in resp.text.lower())
            if not rate_limited or attempt == MAX_RATE_LIMIT_RETRIES:
                return resp

            retry_after = resp.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                sleep_for = int(retry_after)
            else:
                reset = int(resp.headers.get("X-RateLimit-Reset", time.time() + 5))
                sleep_for = max(1, reset - int(time.time())) + 1
            LOG.warning("Rate limited on %s %s. Sleeping %ss then retrying...", method, url, sleep_for)
            time.sleep(sleep_for)
        return resp

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = self._req("GET", path, params=params)
        if 200 <= resp.status_code < 300:
            return resp.json()
        body = _body(resp)
        error = NotFoundError if resp.status_code == 404 else GitHubError
        raise error(f"GET {self._url(path)} -> {resp.status_code}: {_message(body)}",
                    status=resp.status_code, body=body)

    def _get_paginated(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict]:
        results = []
        url = self._url(path)
        params = dict(params or {}, per_page=100)
        while url:
            resp = self._req("GET", url, params=params)
            if resp.status_code != 200:
                body = _body(resp)
                error = NotFoundError if resp.status_code == 404 else GitHubError
                raise error(f"GET {url} -> {resp.status_code}: {_message(body)}",
                            status=resp.status_code, body=body)
            results.extend(resp.json())
            url = resp.links.get("next", {}).get("url")
            params = None  # next url already carries the query
        return results

    # ------- App authentication -------
    def authenticate_app(self, app_id: str, private_key: str, org: str) -> str:
        jwt_token = generate_jwt(app_id, private_key)
        headers = {"Authorization": f"Bearer {jwt_token}"}

        resp = self.session.get(self._url(f"/orgs/{org}/installation"), headers=headers, timeout=self.timeout)
        if resp.status_code != 200:
            raise GitHubError(f"No installation of app {app_id} on org '{org}': {resp.status_code}",
                              status=resp.status_code, body=_body(resp))
        installation_id = resp.json()["id"]

        resp = self.session.post(self._url(f"/app/installations/{installation_id}/access_tokens"),
                                 headers=headers, timeout=self.timeout)
        if resp.status_code not in (200, 201):
            raise GitHubError(f"Could not create installation token: {resp.status_code}",
                              status=resp.status_code, body=_body(resp))
        token = resp.json()["token"]
        self.session.headers["Authorization"] = f"Bearer {token}"
        LOG.info("Authenticated as GitHub App %s (installation %s)", app_id, installation_id)
        return token

    # ------- Organization -------
    def get_billing_summary(self, org: str) -> Dict:
        return self._get_json(f"/orgs/{org}/copilot/billing")

    def list_org_members(self, org: str) -> List[Dict]:
        return self._get_paginated(f"/orgs/{org}/members")

    # ------- Teams -------
    def list_teams(self, org: str) -> List[Dict]:
        return self._get_paginated(f"/orgs/{org}/teams")

    def list_team_members(self, team_id: int) -> List[Dict]:
        return self._get_paginated(f"/teams/{team_id}/members")

    def remove_team_membership(self, org: str, team_slug: str, login: str) -> bool:
        try:
            r = self._req("DELETE", f"/orgs/{org}/teams/{team_slug}/memberships/{login}")
        except requests.RequestException as e:
            LOG.error("remove_team_membership %s %s -> %s", team_slug, login, e)
            return False
        if r.status_code in (204, 404):  # 404 if already gone
            return True
        LOG.error("remove_team_membership %s %s -> %s %s", team_slug, login, r.status_code, r.text)
        return False

    # ------- Copilot -------
    def get_member_copilot_status(self, org: str, login: str) -> Optional[Dict]:
        try:
            return self._get_json(f"/orgs/{org}/members/{login}/copilot")
        except NotFoundError:
            return None

    def revoke_org_copilot_seat(self, org: str, login: str) -> RevokeResult:
        try:
            r = self._req("DELETE", f"/orgs/{org}/copilot/billing/selected_users",
                          json={"selected_usernames": [login]})
        except requests.RequestException as e:
            return RevokeResult(RevokeKind.ERROR, message=str(e))

        if 200 <= r.status_code < 300:
            return RevokeResult(RevokeKind.OK)

        body = _body(r)
        message = _message(body)
        if r.status_code == 404:
            return RevokeResult(RevokeKind.NOT_FOUND, message=message)
        if r.status_code == 422:
            team = parse_assigning_team(message)
            if team:
                return RevokeResult(RevokeKind.CONFLICT, inherited_via_team=team, message=message)
        return RevokeResult(RevokeKind.ERROR, message=f"{r.status_code}: {message}")
