"""Tests for MongoSequenceStore error translation."""

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from casebook.core.modules.sequence.allocator import UniqueConstraintError
from casebook.core.modules.sequence.store import MongoSequenceStore
from casebook.core.modules.testcase import models
from casebook.errors import StorageFaultError


class FakeCollection:
    """Just enough of AsyncCollection for the sequence store."""

    name = "test_cases"

    def __init__(self, error=None):
        self.docs = []
        self.error = error

    async def count_documents(self, query):
        if self.error:
            raise self.error
        return sum(1 for doc in self.docs if all(doc.get(k) == v for k, v in query.items()))

    async def find_one(self, query):
        if self.error:
            raise self.error
        return next((doc for doc in self.docs if all(doc.get(k) == v for k, v in query.items())), None)

    async def insert_one(self, doc):
        if self.error:
            raise self.error
        if any(d["project_id"] == doc["project_id"] and d["tc_id"] == doc["tc_id"] for d in self.docs):
            raise DuplicateKeyError("E11000 duplicate key error")
        self.docs.append(doc)


def make_test_case(mock_project, mock_user, tc_id):
    return models.TestCase(project_id=mock_project.id, tc_id=tc_id, title="Login works", created_by=mock_user.id)


class TestMongoSequenceStore:
    @pytest.mark.asyncio
    async def test_create_count_and_find(self, mock_project, mock_user):
        collection = FakeCollection()
        store = MongoSequenceStore(collection, models.TestCase, "project_id", "tc_id")

        await store.create(make_test_case(mock_project, mock_user, "tc1"))

        assert await store.count(mock_project.id) == 1
        found = await store.find_by_key(mock_project.id, "tc1")
        assert found is not None
        assert found.tc_id == "tc1"
        assert await store.find_by_key(mock_project.id, "tc2") is None

    @pytest.mark.asyncio
    async def test_duplicate_key_becomes_unique_constraint_error(self, mock_project, mock_user):
        collection = FakeCollection()
        store = MongoSequenceStore(collection, models.TestCase, "project_id", "tc_id")
        await store.create(make_test_case(mock_project, mock_user, "tc1"))

        with pytest.raises(UniqueConstraintError):
            await store.create(make_test_case(mock_project, mock_user, "tc1"))

    @pytest.mark.asyncio
    async def test_driver_errors_become_storage_faults(self, mock_project, mock_user):
        collection = FakeCollection(error=ServerSelectionTimeoutError("no servers"))
        store = MongoSequenceStore(collection, models.TestCase, "project_id", "tc_id")

        with pytest.raises(StorageFaultError):
            await store.count(mock_project.id)
        with pytest.raises(StorageFaultError):
            await store.find_by_key(mock_project.id, "tc1")
        with pytest.raises(StorageFaultError):
            await store.create(make_test_case(mock_project, mock_user, "tc1"))
