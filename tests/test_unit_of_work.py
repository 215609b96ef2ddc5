"""Tests for deferred batch commits."""

import pytest

from build_registry.errors import StorageError
from build_registry.models import Build, BuildHead
from build_registry.storage import Action, ConsistencyLevel
from build_registry.unit_of_work import UnitOfWork

from test_models import make_build


class TestUnitOfWork:
    """Test collect-then-commit semantics."""

    def test_nothing_written_before_commit(self, storage):
        work = UnitOfWork(storage)
        work.create(make_build())
        assert storage.count(Build) == 0
        assert len(work) == 1

    def test_commit_applies_in_one_batch(self, storage):
        build = make_build()
        work = UnitOfWork(storage, ConsistencyLevel.SERIALIZABLE)
        work.create(build).create(build.to_head())

        assert work.commit() == 2
        assert storage.count(Build) == 1
        assert storage.count(BuildHead) == 1
        operations, consistency = storage.batches[-1]
        assert [op.action for op in operations] == [Action.CREATE, Action.CREATE]
        assert consistency is ConsistencyLevel.SERIALIZABLE

    def test_remove_by_key(self, storage):
        build = make_build()
        storage.create(build)
        UnitOfWork(storage).remove(Build, {
            "name": "app", "env": "test", "version": "1.0.0", "locale": "en-US",
        }).commit()
        assert storage.count(Build) == 0

    def test_failed_commit_leaves_nothing(self, storage):
        storage.fail_on_commit = True
        work = UnitOfWork(storage).create(make_build())
        with pytest.raises(StorageError):
            work.commit()
        assert storage.count(Build) == 0

    def test_empty_commit_skips_storage(self, storage):
        assert UnitOfWork(storage).commit() == 0
        assert storage.batches == []

    def test_cannot_reuse(self, storage):
        work = UnitOfWork(storage)
        work.commit()
        with pytest.raises(RuntimeError):
            work.create(make_build())
