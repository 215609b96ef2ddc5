"""Deferred, all-or-nothing writes across build collections."""

import logging
from typing import Any, List, Mapping, Optional, Type

from build_registry.storage import (
    DEFAULT_CONSISTENCY,
    Action,
    ConsistencyLevel,
    Operation,
    StorageEngine,
)

logger = logging.getLogger(__name__)


class UnitOfWork:
    """
    Collects create/update/remove operations and commits them as one batch.

    Coordinators register writes while they compute values that later
    writes depend on; nothing reaches storage until `commit()`, so an
    error raised before then leaves no partial state behind.
    """

    def __init__(
        self,
        storage: StorageEngine,
        consistency: ConsistencyLevel = DEFAULT_CONSISTENCY,
    ):
        self.storage = storage
        self.consistency = consistency
        self.operations: List[Operation] = []
        self.committed = False

    def create(self, entity: Any) -> "UnitOfWork":
        return self._add(Operation(Action.CREATE, type(entity), entity=entity))

    def update(self, entity: Any) -> "UnitOfWork":
        return self._add(Operation(Action.UPDATE, type(entity), entity=entity))

    def remove(self, model: Type[Any], key: Mapping[str, Any]) -> "UnitOfWork":
        return self._add(Operation(Action.REMOVE, model, key=dict(key)))

    def _add(self, operation: Operation) -> "UnitOfWork":
        if self.committed:
            raise RuntimeError("UnitOfWork has already been committed")
        self.operations.append(operation)
        return self

    def __len__(self) -> int:
        return len(self.operations)

    def commit(self, consistency: Optional[ConsistencyLevel] = None) -> int:
        """
        Execute every collected operation in order as one atomic batch.

        Returns:
            Number of operations committed

        Raises:
            StorageError: Propagated unmodified from the storage engine
        """
        if self.committed:
            raise RuntimeError("UnitOfWork has already been committed")

        count = len(self.operations)
        if count:
            self.storage.execute_batch(self.operations, consistency or self.consistency)
            logger.debug("Unit of work committed %d operations", count)
        self.committed = True
        return count
