"""Ephemeral locks marking a build as in progress for an exact spec."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import redis

from build_registry.constants import DEFAULT_LOCALE
from build_registry.errors import AlreadyRunning, StorageError, ValidationError
from build_registry.keys import BuildSpec, KeyKind, encode_key, normalize_spec

logger = logging.getLogger(__name__)

_GLOB_CHARS = re.compile(r"([*?\[\]\\])")


@dataclass
class ActiveBuild:
    """A lock currently held in the lock store."""
    key: str
    value: Optional[str]


class LockStore(ABC):
    """Abstract interface for the TTL key/value store holding locks."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically set `key` with a TTL unless it exists. Returns True if set."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def scan_by_prefix(self, prefix: str) -> List[str]:
        pass

    @abstractmethod
    def multi_get(self, keys: Sequence[str]) -> List[Optional[str]]:
        pass

    @abstractmethod
    def batch_delete(self, keys: Sequence[str]) -> int:
        pass


class RedisLockStore(LockStore):
    """Lock store backed by Redis."""

    def __init__(self, client: Optional[redis.Redis] = None, url: Optional[str] = None):
        if client is None:
            client = redis.Redis.from_url(url, decode_responses=True) if url else redis.Redis(decode_responses=True)
        self.client = client

    def get(self, key: str) -> Optional[str]:
        try:
            return self._text(self.client.get(key))
        except redis.RedisError as e:
            raise StorageError(f"Failed to read lock {key}: {e}") from e

    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as e:
            raise StorageError(f"Failed to set lock {key}: {e}") from e

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            return bool(self.client.set(key, value, ex=ttl_seconds, nx=True))
        except redis.RedisError as e:
            raise StorageError(f"Failed to set lock {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            raise StorageError(f"Failed to delete lock {key}: {e}") from e

    def scan_by_prefix(self, prefix: str) -> List[str]:
        pattern = _GLOB_CHARS.sub(r"\\\1", prefix) + "*"
        try:
            return sorted({self._text(key) for key in self.client.scan_iter(match=pattern)})
        except redis.RedisError as e:
            raise StorageError(f"Failed to scan locks for {prefix}: {e}") from e

    def multi_get(self, keys: Sequence[str]) -> List[Optional[str]]:
        if not keys:
            return []
        try:
            return [self._text(value) for value in self.client.mget(list(keys))]
        except redis.RedisError as e:
            raise StorageError(f"Failed to read locks: {e}") from e

    def batch_delete(self, keys: Sequence[str]) -> int:
        if not keys:
            return 0
        try:
            pipe = self.client.pipeline(transaction=True)
            for key in keys:
                pipe.delete(key)
            return sum(pipe.execute())
        except redis.RedisError as e:
            raise StorageError(f"Failed to delete locks: {e}") from e

    @staticmethod
    def _text(value):
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value


def _require_exact(spec: BuildSpec) -> None:
    if not spec.name or not spec.env or not spec.version:
        raise ValidationError("Build locks require name, env and version")


class BuildLock:
    """
    Advisory TTL lock per exact (name, env, version, locale).

    Locks expire after their TTL with no renewal. They only keep two
    builds of the identical spec from starting at once; publish, promote
    and rollback do not take them.
    """

    def __init__(self, store: LockStore, default_locale: str = DEFAULT_LOCALE):
        self.store = store
        self.default_locale = default_locale

    def _key(self, spec: BuildSpec) -> str:
        _require_exact(spec)
        return encode_key(normalize_spec(spec, self.default_locale), KeyKind.PARTIAL)

    def _prefix(self, spec: BuildSpec) -> str:
        _require_exact(spec)
        return encode_key(spec, KeyKind.ACTIVE) + "!"

    def acquire(self, spec: BuildSpec, build_id: str, ttl_seconds: int) -> str:
        """
        Mark a build as running.

        Returns:
            The lock key

        Raises:
            AlreadyRunning: If a lock already exists for the exact spec
        """
        key = self._key(spec)
        if not self.store.set_if_absent(key, build_id, ttl_seconds):
            raise AlreadyRunning(f"Build for {spec.name} already in progress")
        logger.info("Acquired %s for %ss", key, ttl_seconds)
        return key

    def release(self, spec: BuildSpec) -> None:
        self.store.delete(self._key(spec))

    def peek(self, spec: BuildSpec) -> Optional[str]:
        return self.store.get(self._key(spec))

    def list_active(self, spec: BuildSpec) -> List[ActiveBuild]:
        """All locks for (name, env, version) across every locale."""
        keys = self.store.scan_by_prefix(self._prefix(spec))
        if not keys:
            return []
        values = self.store.multi_get(keys)
        return [ActiveBuild(key=key, value=value) for key, value in zip(keys, values)]

    def wipe(self, spec: BuildSpec) -> int:
        """Delete every lock for (name, env, version) in one batch."""
        keys = self.store.scan_by_prefix(self._prefix(spec))
        if not keys:
            return 0
        removed = self.store.batch_delete(keys)
        logger.info("Wiped %d active builds for %s", removed, self._prefix(spec))
        return removed
