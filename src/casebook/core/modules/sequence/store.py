from typing import Any

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import DuplicateKeyError

from casebook.core.db import MongoModel, storage_faults
from casebook.core.modules.sequence.allocator import UniqueConstraintError


class MongoSequenceStore[M: MongoModel]:
    """SequenceStore over a MongoDB collection.

    The owning service must create a unique index on (scope_field, id_field),
    otherwise concurrent allocations can produce duplicate ids.
    """

    def __init__(self, collection: AsyncCollection[dict[str, Any]], model: type[M], scope_field: str, id_field: str) -> None:
        self._collection = collection
        self._model = model
        self._scope_field = scope_field
        self._id_field = id_field

    async def count(self, parent_key: Any) -> int:
        with storage_faults("count", collection=self._collection.name, parent_key=parent_key):
            return await self._collection.count_documents({self._scope_field: parent_key})

    def stored_key(self, sequence_id: str) -> Any:
        """Value of id_field that holds the given sequence id."""
        return sequence_id

    async def find_by_key(self, parent_key: Any, sequence_id: str) -> M | None:
        with storage_faults("find", collection=self._collection.name, parent_key=parent_key, sequence_id=sequence_id):
            doc = await self._collection.find_one({self._scope_field: parent_key, self._id_field: self.stored_key(sequence_id)})
        if doc is None:
            return None
        return self._model.model_validate(doc)

    async def create(self, entity: M) -> M:
        try:
            with storage_faults("insert", collection=self._collection.name, entity_id=entity.id):
                await self._collection.insert_one(entity.to_mongo())
        except DuplicateKeyError as e:
            raise UniqueConstraintError(str(e)) from e
        return entity
