"""
Shared fixtures: an in-memory repository standing in for a git mirror, and
SQLite-backed stores in a temporary directory.
"""
from datetime import datetime, timedelta, timezone

import pytest

from blamer.core.errors import GitCommandError
from blamer.models.commit import CommitHandle
from blamer.models.project import Environment, Project
from blamer.services.blame_cache import BlameCache
from blamer.services.blame_store import BlameStore
from blamer.services.bug_store import BugStore

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def sha(n) -> str:
    return f"{n:040x}"


class FakeRepository:
    """Dictionary-backed stand-in for GitRepository."""

    def __init__(self, identity="fakerepo"):
        self.identity = identity
        self.commits = {}
        self.blames = {}
        self.history = []
        self.unfetched = {}
        self.blame_calls = []
        self.fetch_calls = 0

    def add_commit(self, n, days=0, fetched=True) -> CommitHandle:
        commit = CommitHandle(sha=sha(n), committer_date=BASE_TIME + timedelta(days=days),
                              author_name=f"dev{n}", author_email=f"dev{n}@example.com")
        if fetched:
            self.commits[commit.sha] = commit
            self.history.insert(0, commit.sha)
        else:
            self.unfetched[commit.sha] = commit
        return commit

    def set_blame(self, revision, file, line, blamed):
        self.blames[(revision, file, line)] = blamed

    def resolve(self, revision):
        return self.commits.get(revision)

    def blame(self, revision, file, line):
        self.blame_calls.append((revision, file, line))
        blamed = self.blames.get((revision, file, line))
        if isinstance(blamed, Exception):
            raise blamed
        return self.commits.get(blamed) if blamed else None

    def fetch(self):
        self.fetch_calls += 1
        for commit_sha, commit in self.unfetched.items():
            self.commits[commit_sha] = commit
            self.history.insert(0, commit_sha)
        self.unfetched = {}

    def commits_from(self, revision, limit, skip=0):
        if revision not in self.commits:
            raise GitCommandError(["log", revision], 128, "bad revision")
        start = self.history.index(revision)
        return [self.commits[s] for s in self.history[start:][skip:skip + limit]]


class FakeRepositoryFactory:
    def __init__(self, repository):
        self.repository = repository

    def for_project(self, project):
        return self.repository


@pytest.fixture
def repo():
    return FakeRepository()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "blamer.sqlite3")


@pytest.fixture
def bug_store(db_path):
    return BugStore(db_path)


@pytest.fixture
def blame_store(db_path):
    return BlameStore(db_path)


@pytest.fixture
def blame_cache(blame_store):
    return BlameCache(blame_store, max_entries=100)


@pytest.fixture
def project():
    return Project(
        id=1,
        name="app",
        repository_url="git@example.com:org/app.git",
        filter_paths=["vendor/"],
        whitelist_paths=["vendor/ours/"],
    )


@pytest.fixture
def environment(project):
    return Environment(id=1, name="production", project=project)
