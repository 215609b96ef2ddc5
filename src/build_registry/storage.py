"""Storage engine interface and Postgres implementation for build entities."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Type

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import (
    ISOLATION_LEVEL_READ_COMMITTED,
    ISOLATION_LEVEL_REPEATABLE_READ,
    ISOLATION_LEVEL_SERIALIZABLE,
)
from psycopg2.extras import Json

from build_registry.db import get_cursor
from build_registry.errors import StorageError
from build_registry.models import entity_key

logger = logging.getLogger(__name__)


class ConsistencyLevel(str, Enum):
    """Consistency a batch is committed at."""
    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SERIALIZABLE = "serializable"


ISOLATION_LEVELS = {
    ConsistencyLevel.READ_COMMITTED: ISOLATION_LEVEL_READ_COMMITTED,
    ConsistencyLevel.REPEATABLE_READ: ISOLATION_LEVEL_REPEATABLE_READ,
    ConsistencyLevel.SERIALIZABLE: ISOLATION_LEVEL_SERIALIZABLE,
}

DEFAULT_CONSISTENCY = ConsistencyLevel.REPEATABLE_READ


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class Operation:
    """A single deferred write against one collection.

    `entity` is set for create/update, `key` for remove.
    """
    action: Action
    model: Type[Any]
    entity: Optional[Any] = None
    key: Optional[Mapping[str, Any]] = None

    def row_key(self) -> Dict[str, Any]:
        if self.key is not None:
            return dict(self.key)
        return entity_key(self.entity)


class StorageEngine(ABC):
    """Abstract interface for the structured store holding build entities."""

    @abstractmethod
    def get(self, model: Type[Any], key: Mapping[str, Any]) -> Optional[Any]:
        """
        Fetch one entity by primary key.

        Returns:
            The entity, or None if nothing matches
        """
        pass

    @abstractmethod
    def find_all(self, model: Type[Any], criteria: Mapping[str, Any]) -> Iterator[Any]:
        """Yield every entity whose fields equal all non-empty `criteria`."""
        pass

    @abstractmethod
    def execute_batch(
        self,
        operations: Sequence[Operation],
        consistency: ConsistencyLevel = DEFAULT_CONSISTENCY,
    ) -> None:
        """
        Apply all operations atomically.

        Raises:
            StorageError: If the batch could not be committed; nothing is applied
        """
        pass

    def create(self, entity: Any) -> None:
        self.execute_batch([Operation(Action.CREATE, type(entity), entity=entity)])

    def update(self, entity: Any) -> None:
        self.execute_batch([Operation(Action.UPDATE, type(entity), entity=entity)])

    def remove(self, model: Type[Any], key: Mapping[str, Any]) -> None:
        self.execute_batch([Operation(Action.REMOVE, model, key=key)])


def _adapt(model: Type[Any], row: Dict[str, Any]) -> Dict[str, Any]:
    adapted = {}
    for name, value in row.items():
        if name in model.JSON_FIELDS:
            adapted[name] = Json(value)
        elif isinstance(value, bytes):
            adapted[name] = psycopg2.Binary(value)
        else:
            adapted[name] = value
    return adapted


def _where(fields: Sequence[str]) -> sql.Composable:
    if not fields:
        return sql.SQL("TRUE")
    return sql.SQL(" AND ").join(
        sql.SQL("{} = %s").format(sql.Identifier(name)) for name in fields
    )


class PostgresStorage(StorageEngine):
    """Storage engine backed by Postgres tables (see migrations/).

    `create` is an upsert on the primary key so that writing a BuildHead
    replaces the previous one.
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn

    def get(self, model: Type[Any], key: Mapping[str, Any]) -> Optional[Any]:
        fields = list(model.KEY_FIELDS)
        query = sql.SQL("SELECT * FROM {} WHERE {}").format(
            sql.Identifier(model.COLLECTION), _where(fields)
        )
        try:
            with get_cursor(commit=False, dsn=self.dsn) as cursor:
                cursor.execute(query, [key[name] for name in fields])
                row = cursor.fetchone()
        except psycopg2.Error as e:
            raise StorageError(f"Failed to read {model.COLLECTION}: {e}") from e

        if not row:
            return None
        return model.from_row(row)

    def find_all(self, model: Type[Any], criteria: Mapping[str, Any]) -> Iterator[Any]:
        fields = [name for name, value in criteria.items() if value]
        query = sql.SQL("SELECT * FROM {} WHERE {} ORDER BY create_date ASC").format(
            sql.Identifier(model.COLLECTION), _where(fields)
        )
        try:
            with get_cursor(commit=False, dsn=self.dsn) as cursor:
                cursor.execute(query, [criteria[name] for name in fields])
                rows = cursor.fetchall()
        except psycopg2.Error as e:
            raise StorageError(f"Failed to query {model.COLLECTION}: {e}") from e

        for row in rows:
            yield model.from_row(row)

    def execute_batch(
        self,
        operations: Sequence[Operation],
        consistency: ConsistencyLevel = DEFAULT_CONSISTENCY,
    ) -> None:
        if not operations:
            return

        isolation = ISOLATION_LEVELS[ConsistencyLevel(consistency)]
        try:
            with get_cursor(dsn=self.dsn, isolation_level=isolation) as cursor:
                for op in operations:
                    query, params = self._statement(op)
                    cursor.execute(query, params)
        except psycopg2.Error as e:
            raise StorageError(f"Failed to commit batch of {len(operations)} operations: {e}") from e

        logger.debug("Committed %d operations at %s", len(operations), consistency)

    def _statement(self, op: Operation):
        model = op.model
        table = sql.Identifier(model.COLLECTION)
        key = op.row_key()
        key_fields = list(model.KEY_FIELDS)

        if op.action is Action.REMOVE:
            query = sql.SQL("DELETE FROM {} WHERE {}").format(table, _where(key_fields))
            return query, [key[name] for name in key_fields]

        row = _adapt(model, op.entity.to_row())
        value_fields = [name for name in row if name not in key_fields]

        if op.action is Action.UPDATE:
            query = sql.SQL("UPDATE {} SET {} WHERE {}").format(
                table,
                sql.SQL(", ").join(
                    sql.SQL("{} = %s").format(sql.Identifier(name)) for name in value_fields
                ),
                _where(key_fields),
            )
            return query, [row[name] for name in value_fields] + [key[name] for name in key_fields]

        columns = list(row)
        query = sql.SQL(
            "INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) DO UPDATE SET {}"
        ).format(
            table,
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(sql.Placeholder() * len(columns)),
            sql.SQL(", ").join(map(sql.Identifier, key_fields)),
            sql.SQL(", ").join(
                sql.SQL("{0} = EXCLUDED.{0}").format(sql.Identifier(name)) for name in value_fields
            ),
        )
        return query, [row[name] for name in columns]
