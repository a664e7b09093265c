"""
Unit Tests — Blame Cache
========================
Idempotence, no-nil storage, capacity bound, LRU eviction order and
failure handling of the write-through blame cache.
"""
import threading

import pytest

from blamer.core.errors import BlameUnavailable, RepositoryMirrorLockTimeout
from blamer.models.blame import BlameEntry
from blamer.services.blame_cache import BlameCache
from tests.conftest import sha


@pytest.fixture
def occurrence_sha(repo):
    return repo.add_commit(10, days=10).sha


class TestBlameCache:

    def test_second_call_is_a_hit(self, repo, blame_cache, occurrence_sha):
        repo.add_commit(1)
        repo.set_blame(occurrence_sha, "app/a.rb", 5, sha(1))

        first = blame_cache.blame(repo, occurrence_sha, "app/a.rb", 5)
        second = blame_cache.blame(repo, occurrence_sha, "app/a.rb", 5)

        assert first.sha == second.sha == sha(1)
        assert repo.blame_calls == [(occurrence_sha, "app/a.rb", 5)]

    def test_none_is_never_stored(self, repo, blame_cache, blame_store, occurrence_sha):
        assert blame_cache.blame(repo, occurrence_sha, "app/a.rb", 5) is None
        assert blame_cache.blame(repo, occurrence_sha, "app/a.rb", 5) is None
        assert len(repo.blame_calls) == 2
        assert not blame_store.contains(repo.identity, occurrence_sha, "app/a.rb", 5)
        assert blame_store.count() == 0

    def test_blame_failure_is_no_blame(self, repo, blame_cache, blame_store, occurrence_sha):
        repo.set_blame(occurrence_sha, "app/a.rb", 5, BlameUnavailable(["blame"], 128, "fatal: no such path"))
        assert blame_cache.blame(repo, occurrence_sha, "app/a.rb", 5) is None
        assert blame_store.count() == 0

    def test_timeout_is_no_blame(self, repo, blame_cache, occurrence_sha):
        repo.set_blame(occurrence_sha, "app/a.rb", 5, BlameUnavailable(["blame"], None))
        assert blame_cache.blame(repo, occurrence_sha, "app/a.rb", 5) is None

    def test_lock_timeout_propagates(self, repo, blame_cache, occurrence_sha):
        repo.set_blame(occurrence_sha, "app/a.rb", 5, RepositoryMirrorLockTimeout("/tmp/x.lock", 1))
        with pytest.raises(RepositoryMirrorLockTimeout):
            blame_cache.blame(repo, occurrence_sha, "app/a.rb", 5)

    def test_unresolvable_hit_falls_through(self, repo, blame_cache, blame_store, occurrence_sha):
        repo.add_commit(1)
        repo.add_commit(3)
        repo.set_blame(occurrence_sha, "app/a.rb", 5, sha(1))
        blame_cache.blame(repo, occurrence_sha, "app/a.rb", 5)

        # history rewritten: the cached commit is gone
        del repo.commits[sha(1)]
        repo.set_blame(occurrence_sha, "app/a.rb", 5, sha(3))

        assert blame_cache.blame(repo, occurrence_sha, "app/a.rb", 5).sha == sha(3)
        assert blame_store.lookup(repo.identity, occurrence_sha, "app/a.rb", 5).blamed_revision == sha(3)

    def test_capacity_bound(self, repo, blame_store, occurrence_sha):
        cache = BlameCache(blame_store, max_entries=3)
        repo.add_commit(1)
        for line in range(1, 6):
            repo.set_blame(occurrence_sha, "app/a.rb", line, sha(1))
            cache.blame(repo, occurrence_sha, "app/a.rb", line)
            assert blame_store.count() <= 3
        assert blame_store.count() == 3
        assert blame_store.contains(repo.identity, occurrence_sha, "app/a.rb", 5)
        assert not blame_store.contains(repo.identity, occurrence_sha, "app/a.rb", 1)

    def test_invalid_capacity(self, blame_store):
        with pytest.raises(ValueError):
            BlameCache(blame_store, max_entries=0)


class TestBlameStore:

    def _entry(self, line):
        return BlameEntry(repository_hash="r", revision=sha(10), file="app/a.rb", line=line,
                          blamed_revision=sha(1))

    def test_least_recently_accessed_evicted_first(self, blame_store):
        for line in (1, 2, 3):
            blame_store.write(self._entry(line), max_entries=3)
        blame_store.touch(self._entry(1), at=4_000_000_000.0)

        assert blame_store.write(self._entry(4), max_entries=3) == 1
        assert blame_store.contains("r", sha(10), "app/a.rb", 1)
        assert not blame_store.contains("r", sha(10), "app/a.rb", 2)

    def test_rewrite_does_not_evict(self, blame_store):
        for line in (1, 2):
            blame_store.write(self._entry(line), max_entries=2)
        assert blame_store.write(self._entry(2), max_entries=2) == 0
        assert blame_store.count() == 2

    def test_shrunk_capacity_evicts_down(self, blame_store):
        for line in range(1, 6):
            blame_store.write(self._entry(line), max_entries=10)
        assert blame_store.write(self._entry(6), max_entries=2) == 4
        assert blame_store.count() == 2

    def test_capacity_bound_under_concurrent_writers(self, blame_store):
        evicted = []
        errors = []

        def write_lines(worker):
            try:
                for n in range(30):
                    evicted.append(blame_store.write(self._entry(worker * 100 + n), max_entries=10))
            except Exception as e:  # noqa: BLE001 - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=write_lines, args=(w,)) for w in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert blame_store.count() == 10
        assert sum(evicted) == 8 * 30 - 10
