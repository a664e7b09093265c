"""
Unit Tests — Models
===================
Path classification, repository identity, bug lifecycle helpers and
occurrence accessors.
"""
import hashlib
from datetime import datetime, timedelta, timezone

from blamer.core.constants import PATH_FILTERED, PATH_LIBRARY, PATH_PROJECT
from blamer.models.backtrace import Backtrace, NormalFrame
from blamer.models.bug import Bug
from blamer.models.deploy import Deploy
from blamer.models.occurrence import Occurrence
from tests.conftest import BASE_TIME, sha


class TestProject:

    def test_path_types(self, project):
        assert project.path_type("app/models/user.rb") == PATH_PROJECT
        assert project.path_type("/usr/lib/ruby/2.7.0/net/http.rb") == PATH_LIBRARY
        assert project.path_type("vendor/gems/rack/lib/rack.rb") == PATH_FILTERED
        assert project.path_type("vendor/ours/lib/thing.rb") == PATH_PROJECT

    def test_meta_file_names_are_library(self, project):
        for name in ("(irb)", "(eval)", "-e", "", None):
            assert project.path_type(name) == PATH_LIBRARY

    def test_repository_hash(self, project):
        expected = hashlib.sha1(b"git@example.com:org/app.git").hexdigest()
        assert project.repository_hash == expected


class TestBug:

    def _bug(self):
        return Bug(environment_id=1, class_name="NoMethodError", file="app/a.rb", line=3)

    def test_lifecycle(self):
        bug = self._bug()
        assert bug.status == "open"
        bug.mark_fixed(resolution_revision=sha(5), at=BASE_TIME, cause="user:sancho")
        assert bug.status == "fixed"
        bug.mark_fix_deployed(7)
        assert bug.status == "fix_deployed"
        assert bug.fixing_deploy_id == 7

        bug.reopen("occurrence:9")
        assert bug.status == "open"
        assert bug.fixed_at is None
        assert bug.modifier == "occurrence:9"

    def test_criteria(self):
        criteria = self._bug().criteria
        assert criteria.as_dict() == {
            "class_name": "NoMethodError", "file": "app/a.rb", "line": 3, "blamed_revision": None,
        }


class TestOccurrence:

    def test_faulted_backtrace(self, environment):
        frames = [NormalFrame(file="app/a.rb", line=1)]
        occurrence = Occurrence(
            environment=environment,
            class_name="RuntimeError",
            backtraces=[Backtrace(name="T1"), Backtrace(name="T0", faulted=True, frames=frames)],
        )
        assert occurrence.faulted_backtrace == frames

    def test_no_faulted_backtrace(self, environment):
        occurrence = Occurrence(environment=environment, class_name="RuntimeError",
                                backtraces=[Backtrace(name="T1", frames=[NormalFrame(file="a.rb")])])
        assert occurrence.faulted_backtrace == []

    def test_provenance(self, environment):
        occurrence = Occurrence(environment=environment, class_name="RuntimeError")
        assert occurrence.provenance == "occurrence"
        occurrence.id = 12
        assert occurrence.provenance == "occurrence:12"


class TestTimes:

    def test_naive_times_are_utc(self, environment):
        naive = datetime(2024, 1, 1, 12, 0)
        deploy = Deploy(environment_id=1, revision=sha(1), deployed_at=naive)
        assert deploy.deployed_at == BASE_TIME + timedelta(hours=12)
        occurrence = Occurrence(environment=environment, class_name="RuntimeError", occurred_at=naive)
        assert occurrence.occurred_at.tzinfo is not None
        bug = Bug(environment_id=1, class_name="RuntimeError", file="app/a.rb", fixed_at=naive)
        assert bug.fixed_at.utcoffset() == timedelta(0)

    def test_aware_times_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        bug = Bug(environment_id=1, class_name="RuntimeError", file="app/a.rb")
        bug.mark_fixed(at=datetime(2024, 1, 1, 2, 0, tzinfo=plus_two))
        assert bug.fixed_at == BASE_TIME
        assert bug.fixed_at.tzinfo == timezone.utc
