#!/usr/bin/env python3
import sys
import time
import argparse
import logging
from typing import Callable, Dict, List, Optional

import pandas as pd
import requests

from copilot_records import TABLE_COLUMNS, InactiveUser, load_inactive_users
from copilot_settings import ConfigError, Settings, setup_logging
from github_client import GitHubClient, GitHubError, RevokeKind, RevokeResult
from removal_report import RemovalResults, write_report

LOG = logging.getLogger("copilot-removal")

CURRENT_USER_REASON = "Current user"
# one retry of the seat removal after detaching the user from its Copilot team
MAX_SEAT_RETRIES = 1


class TeamSlugCache:
    """Copilot access team name -> slug, loaded once per run on first use."""

    def __init__(self, client: GitHubClient, org: str, prefix: str):
        self.client = client
        self.org = org
        self.prefix = prefix
        self._slugs: Optional[Dict[str, str]] = None

    def load(self) -> Dict[str, str]:
        if self._slugs is not None:
            return self._slugs
        LOG.info("Fetching teams information...")
        try:
            teams = self.client.list_teams(self.org)
        except (GitHubError, requests.RequestException) as e:
            LOG.error("Error fetching teams: %s", e)
            return {}
        self._slugs = {t["name"]: t["slug"] for t in teams if t["name"].startswith(self.prefix)}
        LOG.info("Found Copilot teams: %s", sorted(self._slugs.items()))
        return self._slugs

    def get(self, team_name: str) -> Optional[str]:
        return self.load().get(team_name)


class AccessReconciler:
    def __init__(self, client: GitHubClient, settings: Settings, sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.settings = settings
        self.org = settings.org_name
        self.dry_run = settings.dry_run
        self.sleep = sleep
        self.teams = TeamSlugCache(client, settings.org_name, settings.team_prefix)
        # (team, login) pairs a dry run pretended to detach
        self._detached = set()

    @property
    def _would(self) -> str:
        return "[DRY RUN] Would have removed" if self.dry_run else "Removed"

    def is_copilot_team(self, team_name: str) -> bool:
        return team_name.startswith(self.settings.team_prefix)

    # ------- Seat revocation -------
    def _preview_revoke(self, login: str) -> RevokeResult:
        """Read-only prediction of revoke_org_copilot_seat used in dry runs."""
        try:
            access = self.client.get_member_copilot_status(self.org, login)
        except (GitHubError, requests.RequestException) as e:
            return RevokeResult(RevokeKind.ERROR, message=str(e))
        if access is None:
            return RevokeResult(RevokeKind.NOT_FOUND)
        team = (access.get("assigning_team") or {}).get("name")
        if team and (team, login) not in self._detached:
            return RevokeResult(RevokeKind.CONFLICT, inherited_via_team=team,
                                message=f"{login} is assigned via team {team}")
        return RevokeResult(RevokeKind.OK)

    def revoke_seat(self, login: str) -> RevokeResult:
        LOG.info("Removing Copilot access for user: %s", login)
        if self.dry_run:
            return self._preview_revoke(login)
        return self.client.revoke_org_copilot_seat(self.org, login)

    # ------- Team detachment -------
    def remove_from_team(self, login: str, team_name: str) -> bool:
        if not self.is_copilot_team(team_name):
            LOG.info("%s is not a Copilot Access team, skipping team removal.", team_name)
            return False

        team_slug = self.teams.get(team_name)
        if not team_slug:
            LOG.error("Could not find team slug for: %s", team_name)
            return False

        LOG.info("Removing user %s from Copilot Access team: %s (slug: %s)", login, team_name, team_slug)
        if self.dry_run:
            self._detached.add((team_name, login))
        elif not self.client.remove_team_membership(self.org, team_slug, login):
            LOG.error("Error removing %s from Copilot Access team %s", login, team_name)
            return False

        LOG.info("%s %s from Copilot Access team %s", self._would, login, team_name)
        return True

    # ------- State machine -------
    def remove_access(self, user: InactiveUser) -> bool:
        retries_left = MAX_SEAT_RETRIES
        while True:
            result = self.revoke_seat(user.login)

            if result.kind == RevokeKind.OK:
                LOG.info("%s Copilot access for user: %s", self._would, user.login)
                return True
            if result.kind == RevokeKind.NOT_FOUND:
                LOG.info("No Copilot seat left for %s, treating as removed", user.login)
                return True

            LOG.error("Error removing Copilot access for %s: %s", user.login, result.message)
            if result.kind != RevokeKind.CONFLICT or retries_left == 0:
                return False

            LOG.info("User %s has Copilot access through team: %s", user.login, result.inherited_via_team)
            if not self.remove_from_team(user.login, result.inherited_via_team):
                return False

            retries_left -= 1
            if not self.dry_run and self.settings.settle_delay:
                self.sleep(self.settings.settle_delay)

    def reconcile(self, users: List[InactiveUser]) -> RemovalResults:
        results = RemovalResults()
        for user in users:
            if self.settings.is_current_user(user.login):
                LOG.info("Skipping current user: %s", user.login)
                results.skip(user, CURRENT_USER_REASON)
                continue

            try:
                removed = self.remove_access(user)
            except (GitHubError, requests.RequestException) as e:
                LOG.error("Unexpected error while processing %s: %s", user.login, e)
                removed = False

            if removed:
                results.successful.append(user)
                LOG.info("Successfully removed access for %s - GitHub will send an automatic notification",
                         user.login)
            else:
                results.failed.append(user)
        return results


# ------------- Logging helpers -------------

def _table(users: List[InactiveUser], reasons: Optional[List[str]] = None) -> str:
    df = pd.DataFrame([u.row() for u in users], columns=TABLE_COLUMNS)
    if reasons is not None:
        df["Reason"] = reasons
    return df.to_string(index=False)


def log_results(results: RemovalResults):
    LOG.info("Final Results:")
    LOG.info("==============")
    if results.successful:
        LOG.info("Users processed successfully:\n%s", _table(results.successful))
    if results.failed:
        LOG.info("Failed to process:\n%s", _table(results.failed))
    if results.skipped:
        LOG.info("Skipped users:\n%s", _table([s["user"] for s in results.skipped],
                                              [s["reason"] for s in results.skipped]))


def run(settings: Settings, client: Optional[GitHubClient] = None,
        sleep: Callable[[float], None] = time.sleep) -> str:
    LOG.info("Copilot Access Removal Process")
    LOG.info("============================")
    LOG.info("Current Date and Time (UTC): %s", settings.reference_date.strftime("%Y-%m-%d %H:%M:%S"))
    LOG.info("Current User's Login: %s", settings.current_user or "-")
    LOG.info("Mode: %s", "DRY RUN" if settings.dry_run else "PRODUCTION")

    users = load_inactive_users(settings.inactive_users_file)
    if users:
        LOG.info("Found %d inactive users to process.", len(users))
        LOG.info("Users to be processed:\n%s", _table(users))
    else:
        LOG.info("No inactive users to process.")

    client = client or GitHubClient.from_settings(settings)
    reconciler = AccessReconciler(client, settings, sleep=sleep)
    results = reconciler.reconcile(users)

    log_results(results)
    path = write_report(results, settings.reference_date, settings.dry_run, settings.report_dir)

    LOG.info("Process completed.")
    LOG.info("%s: %d users", "Would process" if settings.dry_run else "Processed", len(results.successful))
    LOG.info("Failed to process: %d users", len(results.failed))
    LOG.info("Skipped: %d users", len(results.skipped))
    return path


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Remove Copilot seats of inactive users and write a report.")
    parser.add_argument("--org", help="Organization name (overrides ORG_NAME)")
    parser.add_argument("--input", help="Inactive users file (overrides INACTIVE_USERS_FILE)")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", default=None,
                        help="Only preview removals")
    parser.add_argument("--no-dry-run", dest="dry_run", action="store_false",
                        help="Really remove seats and team memberships")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    setup_logging(args.debug)

    try:
        settings = Settings.from_env().override(
            org_name=args.org, inactive_users_file=args.input, dry_run=args.dry_run).validate()
        run(settings)
    except (ConfigError, GitHubError, requests.RequestException, OSError, ValueError) as e:
        LOG.error("Error during the process: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
