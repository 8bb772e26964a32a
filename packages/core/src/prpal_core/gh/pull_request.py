from __future__ import annotations

import logging
from typing import Protocol

from github import Auth, Github, GithubException

from prpal_core.models import ChangedFile, ReviewableItem
from prpal_core.utils.retry import with_retry

logger = logging.getLogger(__name__)


class ItemSource(Protocol):
    def fetch_open_items(self) -> list[ReviewableItem]: ...

    def fetch_files(self, item: ReviewableItem) -> list[ChangedFile]: ...


def get_client(token: str) -> Github:
    return Github(auth=Auth.Token(token))


def to_item(pr) -> ReviewableItem:
    """Convert a PyGithub PullRequest into a ReviewableItem."""
    repo = pr.base.repo
    return ReviewableItem(
        id=ReviewableItem.make_id(repo.full_name, pr.number),
        number=pr.number,
        title=pr.title,
        repo_owner=repo.owner.login,
        repo_name=repo.name,
        author=pr.user.login if pr.user else "",
        body=pr.body,
        base_ref=pr.base.ref,
        head_ref=pr.head.ref,
        head_sha=pr.head.sha,
        html_url=pr.html_url,
        draft=bool(pr.draft),
        requested_reviewers=tuple(u.login for u in pr.requested_reviewers or []),
        requested_teams=tuple(t.slug for t in pr.requested_teams or []),
        labels=tuple(label.name for label in pr.labels or []),
        additions=pr.additions or 0,
        deletions=pr.deletions or 0,
        changed_files=pr.changed_files or 0,
        updated_at=pr.updated_at,
    )


def fetch_open_items(gh: Github, org: str) -> list[ReviewableItem]:
    """Every open pull request across the organization's repositories.

    Repositories are visited most recently updated first.
    """
    items = []
    repos = with_retry(lambda: list(gh.get_organization(org).get_repos(sort="updated", direction="desc")))
    for repo in repos:
        pulls = with_retry(lambda: list(repo.get_pulls(state="open")))
        items.extend(to_item(pr) for pr in pulls)
    logger.info("Found %d open PR(s) across %d repo(s) in %s", len(items), len(repos), org)
    return items


def get_pull(gh: Github, item: ReviewableItem):
    return gh.get_repo(item.full_name).get_pull(item.number)


def fetch_files(gh: Github, item: ReviewableItem) -> list[ChangedFile]:
    files = with_retry(lambda: list(get_pull(gh, item).get_files()))
    return [
        ChangedFile(
            filename=f.filename,
            status=f.status,
            additions=f.additions,
            deletions=f.deletions,
            patch=f.patch,
        )
        for f in files
    ]


def format_files_as_diff(files: list[ChangedFile]) -> str:
    """Join per-file patches into one unified diff. Files without a patch are skipped."""
    return "\n\n".join(f"--- a/{f.filename}\n+++ b/{f.filename}\n{f.patch}" for f in files if f.patch)


def fetch_diff(gh: Github, item: ReviewableItem) -> str:
    return format_files_as_diff(fetch_files(gh, item))


def fetch_user_teams(gh: Github, org: str) -> list[str]:
    """Slugs of the authenticated user's teams within ``org``."""
    org_lower = org.lower()
    teams = with_retry(lambda: list(gh.get_user().get_teams()))
    slugs = [t.slug for t in teams if t.organization.login.lower() == org_lower]
    logger.info("Found %d team(s) in %s", len(slugs), org)
    return slugs


class GitHubSource:
    """ItemSource backed by the GitHub API for one organization."""

    def __init__(self, token: str, org: str, gh: Github | None = None):
        self.org = org
        self.gh = gh or get_client(token)
        self._username: str | None = None

    @property
    def username(self) -> str:
        if self._username is None:
            self._username = self.gh.get_user().login
        return self._username

    def fetch_open_items(self) -> list[ReviewableItem]:
        return fetch_open_items(self.gh, self.org)

    def fetch_files(self, item: ReviewableItem) -> list[ChangedFile]:
        return fetch_files(self.gh, item)

    def fetch_user_teams(self) -> list[str]:
        try:
            return fetch_user_teams(self.gh, self.org)
        except GithubException as e:
            # Tokens without read:org cannot list teams; fall back to direct requests only.
            logger.warning("Could not list teams in %s: %s", self.org, e)
            return []

    def get_item(self, full_name: str, number: int) -> ReviewableItem:
        return to_item(self.gh.get_repo(full_name).get_pull(number))
