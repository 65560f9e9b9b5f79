#!/usr/bin/env python3
import os
import sys
import argparse
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import pandas as pd
import requests

from copilot_records import (
    TABLE_COLUMNS,
    InactiveUser,
    parse_github_time,
    save_inactive_users,
    sort_by_urgency,
    threshold_date,
)
from copilot_settings import ConfigError, Settings, setup_logging
from github_client import GitHubClient, GitHubError

LOG = logging.getLogger("copilot-usage")


class UsageAuditor:
    """Builds the inactive Copilot seat list for one organization."""

    def __init__(self, client: GitHubClient, settings: Settings):
        self.client = client
        self.settings = settings
        self.org = settings.org_name
        self.reference_date = settings.reference_date
        self.cutoff = threshold_date(settings.reference_date, settings.threshold_days)
        self.billing: Dict = {}

    # ------- Fetching -------
    def _get_teams(self) -> List[Dict]:
        try:
            return self.client.list_teams(self.org)
        except (GitHubError, requests.RequestException) as e:
            LOG.warning("Could not fetch teams: %s", e)
            return []

    def fetch_org_data(self):
        """Billing, members and teams are independent, fetch them together."""
        with ThreadPoolExecutor(max_workers=3) as executor:
            billing = executor.submit(self.client.get_billing_summary, self.org)
            members = executor.submit(self.client.list_org_members, self.org)
            teams = executor.submit(self._get_teams)
            # billing and members are required; their errors propagate
            return billing.result(), members.result(), teams.result()

    def build_team_roster(self, teams: List[Dict]) -> Dict[int, Dict]:
        roster = {}
        for team in teams:
            try:
                members = self.client.list_team_members(team["id"])
            except (GitHubError, requests.RequestException) as e:
                LOG.warning("Could not fetch members for team %s: %s", team.get("name", team["id"]), e)
                members = []
            roster[team["id"]] = {
                "name": team["name"],
                "members": {m["login"] for m in members},
            }
        LOG.info("Loaded rosters for %d teams", len(roster))
        return roster

    def get_copilot_access(self, login: str) -> Optional[Dict]:
        try:
            access = self.client.get_member_copilot_status(self.org, login)
        except (GitHubError, requests.RequestException) as e:
            LOG.warning("Error checking Copilot access for %s: %s", login, e)
            return None
        if access is None:
            LOG.info("No Copilot access for user: %s", login)
        return access

    # ------- Classification -------
    @staticmethod
    def teams_for(login: str, roster: Dict[int, Dict]) -> List[str]:
        return [team["name"] for team in roster.values() if login in team["members"]]

    def classify_member(self, login: str, access: Dict, roster: Dict[int, Dict]) -> Optional[InactiveUser]:
        last_activity = parse_github_time(access.get("last_activity_at"))
        return InactiveUser.from_activity(
            login,
            last_activity,
            reference_date=self.reference_date,
            cutoff=self.cutoff,
            teams=self.teams_for(login, roster),
        )

    def audit(self) -> List[InactiveUser]:
        LOG.info("Current date: %s", self.reference_date.isoformat())
        LOG.info("Threshold date (%d days ago): %s", self.settings.threshold_days, self.cutoff.isoformat())

        billing, members, teams = self.fetch_org_data()
        self.billing = billing
        breakdown = billing.get("seat_breakdown", {})
        LOG.info("Total Copilot seats: %s", breakdown.get("total"))
        LOG.info("Active seats this cycle: %s", breakdown.get("active_this_cycle"))
        LOG.info("Inactive seats this cycle: %s", breakdown.get("inactive_this_cycle"))

        roster = self.build_team_roster(teams)

        logins = []
        for member in members:
            if self.settings.is_current_user(member["login"]):
                LOG.info("Skipping current user: %s", member["login"])
                continue
            logins.append(member["login"])

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
            accesses = list(executor.map(self.get_copilot_access, logins))

        inactive = []
        for login, access in zip(logins, accesses):
            if access is None:
                continue
            LOG.debug("Processing user %s...", login)
            try:
                record = self.classify_member(login, access, roster)
            except ValueError as e:
                LOG.warning("Could not parse last activity for %s: %s", login, e)
                continue
            if record is not None:
                inactive.append(record)

        return sort_by_urgency(inactive)

    def cross_check(self, inactive: List[InactiveUser]):
        billed = self.billing.get("seat_breakdown", {}).get("inactive_this_cycle")
        if billed is None:
            return
        if not inactive and billed > 0:
            LOG.warning("Billing shows %d inactive users, but none were found.", billed)
        elif len(inactive) != billed:
            LOG.info("Note: found %d inactive users, billing shows %d inactive this cycle. "
                     "This might be due to API limitations or recent changes in user status.",
                     len(inactive), billed)


# ------------- Output -------------

def users_frame(users: List[InactiveUser]) -> pd.DataFrame:
    return pd.DataFrame([u.row() for u in users], columns=TABLE_COLUMNS)


def export_table(users: List[InactiveUser], path: str):
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    df = users_frame(users)
    if path.lower().endswith(".xlsx"):
        df.to_excel(path, index=False)
    else:
        df.to_csv(path, index=False)


def write_step_output(users: List[InactiveUser], github_output: Optional[str]):
    if not github_output:
        return
    with open(github_output, "a", encoding="utf-8") as f:
        f.write(f"inactive_users={','.join(u.login for u in users)}\n")


def log_report(users: List[InactiveUser], billed_inactive):
    LOG.info("Inactive Copilot Users Report")
    LOG.info("===============================")
    if not users:
        LOG.info("No inactive users found.")
        return
    LOG.info("Found %d inactive users (Billing shows %s inactive)", len(users), billed_inactive)
    LOG.info("\n%s", users_frame(users).to_string(index=False))


def run(settings: Settings, client: Optional[GitHubClient] = None) -> List[InactiveUser]:
    client = client or GitHubClient.from_settings(settings)
    auditor = UsageAuditor(client, settings)

    LOG.info("Starting to check Copilot usage for %s...", settings.org_name)
    users = auditor.audit()

    log_report(users, auditor.billing.get("seat_breakdown", {}).get("inactive_this_cycle"))
    auditor.cross_check(users)

    save_inactive_users(users, settings.inactive_users_file)
    export_table(users, settings.inactive_users_export)
    LOG.info("Inactive users written to %s and %s",
             settings.inactive_users_file, settings.inactive_users_export)
    write_step_output(users, settings.github_output)

    LOG.info("Finished checking Copilot usage.")
    return users


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="List Copilot seats unused for longer than a threshold.")
    parser.add_argument("--org", help="Organization name (overrides ORG_NAME)")
    parser.add_argument("--threshold-days", type=int, help="Days of inactivity (overrides THRESHOLD_DAYS)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    setup_logging(args.debug)

    try:
        settings = Settings.from_env().override(
            org_name=args.org, threshold_days=args.threshold_days).validate()
        run(settings)
    except (ConfigError, GitHubError, requests.RequestException, OSError, ValueError) as e:
        LOG.error("Fatal error during the check process: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
