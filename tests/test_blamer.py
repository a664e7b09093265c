"""
Unit Tests — Blamers
====================
Bug resolution for hosted and versioned projects, duplicate following,
revision fallback, and the git-free strategy.
"""
from datetime import timedelta

import pytest

from blamer.agents.blamer_registry import blamer_for
from blamer.agents.message_blamer import MessageBlamer, message_fragment
from blamer.agents.recency_blamer import RecencyBlamer
from blamer.agents.simple_blamer import SimpleBlamer
from blamer.core.errors import UnresolvableRevision
from blamer.models.backtrace import AddressFrame, Backtrace, NormalFrame
from blamer.models.bug import BugCriteria
from blamer.models.deploy import Deploy
from blamer.models.occurrence import Occurrence
from tests.conftest import BASE_TIME, sha

FRAMES = [
    NormalFrame(file="/usr/lib/ruby/net/http.rb", line=10, symbol="request"),
    NormalFrame(file="app/models/user.rb", line=3, symbol="save"),
]


def _occurrence(environment, revision=sha(10), frames=FRAMES, deploy=None,
                class_name="NoMethodError", message="undefined method `name' for nil"):
    return Occurrence(
        environment=environment,
        class_name=class_name,
        revision=revision,
        deploy=deploy,
        client="rails",
        message=message,
        backtraces=[
            Backtrace(name="Thread 1", faulted=False, frames=[NormalFrame(file="app/other.rb", line=1)]),
            Backtrace(name="Thread 0", faulted=True, frames=list(frames)),
        ],
    )


@pytest.fixture
def history(repo):
    repo.add_commit(1, days=0)
    repo.add_commit(10, days=10)
    repo.set_blame(sha(10), "app/models/user.rb", 3, sha(1))
    return repo


@pytest.fixture
def make_blamer(bug_store, history, blame_cache):
    def build(occurrence, cls=RecencyBlamer, **kwargs):
        return cls(occurrence, store=bug_store, repository=history, blame_cache=blame_cache, **kwargs)
    return build


def _deploy(bug_store, revision=sha(10), days=0):
    return bug_store.create_deploy(Deploy(environment_id=1, revision=revision,
                                          deployed_at=BASE_TIME + timedelta(days=days)))


# ===========================================================================
# 1. Hosted projects
# ===========================================================================
class TestHostedResolution:

    def test_bug_attributes_from_blame(self, make_blamer, environment):
        resolution = make_blamer(_occurrence(environment)).find_or_create_bug()
        bug = resolution.bug
        assert resolution.created
        assert (bug.class_name, bug.file, bug.line) == ("NoMethodError", "app/models/user.rb", 3)
        assert bug.blamed_revision == sha(1)
        assert bug.deploy_id is None
        assert bug.revision == sha(10)
        assert bug.client == "rails"
        assert bug.special_file is False

    def test_identical_occurrences_group(self, make_blamer, environment):
        first = make_blamer(_occurrence(environment)).find_or_create_bug()
        second = make_blamer(_occurrence(environment, message="different message")).find_or_create_bug()
        assert first.bug.id == second.bug.id
        assert not second.created

    def test_class_name_separates(self, make_blamer, environment):
        first = make_blamer(_occurrence(environment)).find_or_create_bug()
        second = make_blamer(_occurrence(environment, class_name="TypeError")).find_or_create_bug()
        assert first.bug.id != second.bug.id

    def test_message_template_is_filtered(self, make_blamer, environment):
        occurrence = _occurrence(environment, message="Undefined 123 for #<Object:0x007fedfa0aa920>")
        bug = make_blamer(occurrence).find_or_create_bug().bug
        assert bug.message_template == "Undefined [NUMBER] for #<Object:[ADDRESS]>"

    def test_filtering_disabled(self, make_blamer, environment):
        environment.project.disable_message_filtering = True
        occurrence = _occurrence(environment, message="Undefined 123")
        assert make_blamer(occurrence).find_or_create_bug().bug.message_template == "Undefined 123"

    def test_special_location(self, make_blamer, environment):
        occurrence = _occurrence(environment, frames=[AddressFrame(address=27)])
        bug = make_blamer(occurrence).find_or_create_bug().bug
        assert (bug.file, bug.line, bug.special_file) == ("0x0000001B", 1, True)

    def test_duplicate_is_followed(self, make_blamer, bug_store, environment):
        duplicate = make_blamer(_occurrence(environment)).find_or_create_bug().bug
        target = bug_store.find_or_create_bug(
            1, BugCriteria(class_name="NoMethodError", file="app/models/account.rb", line=7)
        ).bug
        bug_store.mark_as_duplicate(duplicate, target)

        resolution = make_blamer(_occurrence(environment)).find_or_create_bug()
        assert resolution.bug.id == target.id
        assert not resolution.bug.is_duplicate


# ===========================================================================
# 2. Versioned projects
# ===========================================================================
class TestVersionedResolution:

    def test_same_deploy_same_bug(self, make_blamer, bug_store, environment):
        d1 = _deploy(bug_store)
        first = make_blamer(_occurrence(environment, deploy=d1)).find_or_create_bug()
        second = make_blamer(_occurrence(environment, deploy=d1)).find_or_create_bug()
        assert first.bug.deploy_id == d1.id
        assert second.bug.id == first.bug.id

    def test_open_bug_repointed_to_new_deploy(self, make_blamer, bug_store, environment):
        d1 = _deploy(bug_store, days=0)
        d2 = _deploy(bug_store, days=1)
        original = make_blamer(_occurrence(environment, deploy=d1)).find_or_create_bug().bug

        resolution = make_blamer(_occurrence(environment, deploy=d2)).find_or_create_bug()
        assert resolution.bug.id == original.id
        assert resolution.deploy_repointed
        assert resolution.bug.deploy_id == d2.id
        assert bug_store.get_bug(original.id).deploy_id == d2.id

    def test_fixed_bug_in_other_deploy_not_reused(self, make_blamer, bug_store, environment):
        d1 = _deploy(bug_store, days=0)
        d2 = _deploy(bug_store, days=1)
        original = make_blamer(_occurrence(environment, deploy=d1)).find_or_create_bug().bug
        original.mark_fixed()
        bug_store.save_bug(original)

        resolution = make_blamer(_occurrence(environment, deploy=d2)).find_or_create_bug()
        assert resolution.created
        assert resolution.bug.id != original.id
        assert resolution.bug.deploy_id == d2.id

    def test_deploy_revision_used_when_occurrence_has_none(self, make_blamer, bug_store, environment):
        d1 = _deploy(bug_store, revision=sha(10))
        bug = make_blamer(_occurrence(environment, revision=None, deploy=d1)).find_or_create_bug().bug
        assert bug.blamed_revision == sha(1)


# ===========================================================================
# 3. Revisions and strategies
# ===========================================================================
class TestStrategies:

    def test_unresolvable_revision(self, make_blamer, environment):
        with pytest.raises(UnresolvableRevision):
            make_blamer(_occurrence(environment, revision=sha(99))).find_or_create_bug()

    def test_no_revision_no_deploy(self, make_blamer, environment):
        with pytest.raises(UnresolvableRevision):
            make_blamer(_occurrence(environment, revision=None)).find_or_create_bug()

    def test_recency_blamer_needs_git(self, bug_store, environment):
        with pytest.raises(ValueError):
            RecencyBlamer(_occurrence(environment), store=bug_store).find_or_create_bug()

    def test_simple_blamer_groups_identical_backtraces(self, bug_store, environment):
        first = SimpleBlamer(_occurrence(environment, revision=None), store=bug_store).find_or_create_bug()
        second = SimpleBlamer(_occurrence(environment, revision=None), store=bug_store).find_or_create_bug()
        other_frames = [NormalFrame(file="app/models/user.rb", line=4, symbol="save")]
        third = SimpleBlamer(_occurrence(environment, frames=other_frames), store=bug_store).find_or_create_bug()

        assert first.bug.id == second.bug.id != third.bug.id
        assert first.bug.file.startswith("[S] ")
        assert first.bug.line == 1
        assert first.bug.blamed_revision is None
        assert first.bug.special_file is True

    def test_blamer_for(self, project):
        assert blamer_for(project) is RecencyBlamer
        assert blamer_for(project.model_copy(update={"blamer_type": "simple"})) is SimpleBlamer
        assert blamer_for(project.model_copy(update={"blamer_type": "message"})) is MessageBlamer
        with pytest.raises(ValueError):
            blamer_for(project.model_copy(update={"blamer_type": "bogus"}))


# ===========================================================================
# 4. Message strategy
# ===========================================================================
class TestMessageBlamer:

    @pytest.mark.parametrize("message, fragment", [
        ('undefined method "name" for nil', "undefined method "),
        ('"quoted" first', "quoted"),
        ("no quotes at all", "no quotes at all"),
        ('""', ""),
        ("", ""),
    ])
    def test_message_fragment(self, message, fragment):
        assert message_fragment(message) == fragment

    def test_criteria_ignore_blamed_revision(self, make_blamer, environment):
        criteria = make_blamer(_occurrence(environment), cls=MessageBlamer).bug_search_criteria()
        assert (criteria.file, criteria.line, criteria.blamed_revision) == ("app/models/user.rb", 3, None)

    def test_hosted_bug_keyed_by_fragment(self, make_blamer, environment):
        occurrence = _occurrence(environment, message='Unknown key "a" in params')
        resolution = make_blamer(occurrence, cls=MessageBlamer).find_or_create_bug()
        assert resolution.created
        assert occurrence.message == "Unknown key "
        assert resolution.bug.message_key == "Unknown key "
        assert resolution.bug.message_template == "Unknown key "
        assert resolution.bug.blamed_revision is None

    def test_unsaved_bug_found_by_key(self, make_blamer, environment):
        first = make_blamer(_occurrence(environment, message='Unknown key "a"'), cls=MessageBlamer)
        second = make_blamer(_occurrence(environment, message='Unknown key "b"'), cls=MessageBlamer)
        assert first.find_or_create_bug().bug.id == second.find_or_create_bug().bug.id

    def test_versioned_ignores_message(self, make_blamer, bug_store, environment):
        d1 = _deploy(bug_store)
        first = make_blamer(_occurrence(environment, deploy=d1, message="one"), cls=MessageBlamer)
        second = make_blamer(_occurrence(environment, deploy=d1, message="two"), cls=MessageBlamer)
        bug = first.find_or_create_bug().bug
        assert second.find_or_create_bug().bug.id == bug.id
        assert bug.message_key is None
        assert bug.deploy_id == d1.id
        assert second.occurrence.message == "two"
