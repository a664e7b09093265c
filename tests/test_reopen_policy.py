"""
Unit Tests — Reopen Policy
==========================
Deployed fixes reopen only on the latest deploy; undeployed fixes reopen
once stale; versioned bugs never reopen.
"""
from datetime import datetime, timedelta

import pytest

from blamer.agents.simple_blamer import SimpleBlamer
from blamer.models.bug import BugCriteria
from blamer.models.deploy import Deploy
from blamer.models.occurrence import Occurrence
from tests.conftest import BASE_TIME, sha

NOW = BASE_TIME + timedelta(days=30)
CRITERIA = BugCriteria(class_name="NoMethodError", file="app/a.rb", line=3)


@pytest.fixture
def fixed_bug(bug_store):
    bug = bug_store.find_or_create_bug(1, CRITERIA).bug
    bug.mark_fixed(resolution_revision=sha(5), at=NOW - timedelta(days=1), cause="user:sancho")
    bug_store.save_bug(bug)
    return bug


@pytest.fixture
def deploys(bug_store):
    older = bug_store.create_deploy(Deploy(environment_id=1, revision=sha(10), deployed_at=BASE_TIME))
    latest = bug_store.create_deploy(Deploy(environment_id=1, revision=sha(11),
                                            deployed_at=BASE_TIME + timedelta(days=1)))
    return older, latest


def _blamer(bug_store, environment, revision, **kwargs):
    occurrence = Occurrence(id=42, environment=environment, class_name="NoMethodError", revision=revision)
    return SimpleBlamer(occurrence, store=bug_store, clock=lambda: NOW, **kwargs)


def _deployed(bug_store, bug):
    bug.mark_fix_deployed(None)
    bug_store.save_bug(bug)
    return bug


class TestDeployedFix:

    def test_reopens_on_latest_deploy(self, bug_store, environment, fixed_bug, deploys):
        bug = _deployed(bug_store, fixed_bug)
        assert _blamer(bug_store, environment, sha(11)).reopen_bug_if_necessary(bug) is True

        stored = bug_store.get_bug(bug.id)
        assert not stored.fixed and not stored.fix_deployed
        assert stored.fixed_at is None
        assert stored.modifier == "occurrence:42"

    def test_stays_fixed_on_older_deploy(self, bug_store, environment, fixed_bug, deploys):
        bug = _deployed(bug_store, fixed_bug)
        assert _blamer(bug_store, environment, sha(10)).reopen_bug_if_necessary(bug) is False
        assert bug_store.get_bug(bug.id).fixed

    def test_stays_fixed_on_undeployed_revision(self, bug_store, environment, fixed_bug, deploys):
        bug = _deployed(bug_store, fixed_bug)
        assert _blamer(bug_store, environment, sha(12)).reopen_bug_if_necessary(bug) is False

    def test_reopens_without_any_deploys(self, bug_store, environment, fixed_bug):
        bug = _deployed(bug_store, fixed_bug)
        assert _blamer(bug_store, environment, sha(10)).reopen_bug_if_necessary(bug) is True

    def test_hook_receives_bug_and_occurrence(self, bug_store, environment, fixed_bug):
        calls = []
        bug = _deployed(bug_store, fixed_bug)
        blamer = _blamer(bug_store, environment, sha(10), on_reopen=lambda b, o: calls.append((b.id, o.id)))
        blamer.reopen_bug_if_necessary(bug)
        assert calls == [(bug.id, 42)]


class TestUndeployedFix:

    def test_stale_fix_reopens(self, bug_store, environment, fixed_bug):
        fixed_bug.fixed_at = NOW - timedelta(days=11)
        bug_store.save_bug(fixed_bug)
        assert _blamer(bug_store, environment, sha(10)).reopen_bug_if_necessary(fixed_bug) is True
        assert not bug_store.get_bug(fixed_bug.id).fixed

    def test_recent_fix_stays(self, bug_store, environment, fixed_bug):
        fixed_bug.fixed_at = NOW - timedelta(days=9)
        bug_store.save_bug(fixed_bug)
        assert _blamer(bug_store, environment, sha(10)).reopen_bug_if_necessary(fixed_bug) is False
        assert bug_store.get_bug(fixed_bug.id).fixed

    def test_threshold_is_configurable(self, bug_store, environment, fixed_bug):
        fixed_bug.fixed_at = NOW - timedelta(days=3)
        blamer = _blamer(bug_store, environment, sha(10), stale_after=timedelta(days=2))
        assert blamer.reopen_bug_if_necessary(fixed_bug) is True

    def test_naive_fix_time_is_utc(self, bug_store, environment, fixed_bug):
        fixed_bug.mark_fixed(resolution_revision=sha(5), at=datetime(2020, 1, 1))
        bug_store.save_bug(fixed_bug)
        stored = bug_store.get_bug(fixed_bug.id)
        assert stored.fixed_at.utcoffset() == timedelta(0)
        assert _blamer(bug_store, environment, sha(10)).reopen_bug_if_necessary(stored) is True

    def test_naive_clock(self, bug_store, environment, fixed_bug):
        fixed_bug.fixed_at = NOW - timedelta(days=11)
        blamer = _blamer(bug_store, environment, sha(10))
        blamer.clock = lambda: NOW.replace(tzinfo=None)
        assert blamer.reopen_bug_if_necessary(fixed_bug) is True


class TestNoReopen:

    def test_open_bug_untouched(self, bug_store, environment):
        bug = bug_store.find_or_create_bug(1, CRITERIA).bug
        assert _blamer(bug_store, environment, sha(10)).reopen_bug_if_necessary(bug) is False

    def test_versioned_bug_never_reopens(self, bug_store, environment, deploys):
        _, latest = deploys
        bug = bug_store.find_or_create_versioned_bug(1, CRITERIA, latest.id).bug
        bug.mark_fixed(at=NOW - timedelta(days=60))
        bug_store.save_bug(bug)
        assert _blamer(bug_store, environment, sha(11)).reopen_bug_if_necessary(bug) is False
        assert bug_store.get_bug(bug.id).fixed
