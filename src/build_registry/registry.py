"""Build Files Finder: the registry facade.

Wires storage, content stores and the lock store together and exposes
the lookups and mutations callers use.
"""

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

from build_registry.config import ConfigError, RegistryConfig
from build_registry.constants import DEFAULT_LIMIT, DEFAULT_LOCALE, DEFAULT_PREFIX, GZIP_SUFFIX
from build_registry.content_store import ContentStore, HttpContentStore
from build_registry.errors import ValidationError
from build_registry.keys import BuildSpec, normalize_spec
from build_registry.lock import ActiveBuild, BuildLock, LockStore, RedisLockStore
from build_registry.models import Build, BuildFile, BuildHead, entity_key
from build_registry.options import PublishOptions, normalize_options
from build_registry.promotion import LocaleOutcome, PromotionCoordinator, RollbackCoordinator
from build_registry.publish import PublishCoordinator
from build_registry.storage import (
    DEFAULT_CONSISTENCY,
    ConsistencyLevel,
    PostgresStorage,
    StorageEngine,
)
from build_registry.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class BuildRegistry:
    """
    Registry of published builds across (name, env, version, locale).

    Args:
        storage: Structured store for Build, BuildHead and BuildFile
        content_stores: One content store per allowed environment
        lock_store: TTL key/value store for in-progress markers
        envs: Allowed environments (defaults to the content store keys)
        limit: Fan-out ceiling for uploads and per-locale work
        default_locale: Locale assumed when a spec has none
    """

    def __init__(
        self,
        storage: StorageEngine,
        content_stores: Mapping[str, ContentStore],
        lock_store: Optional[LockStore] = None,
        envs: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_LIMIT,
        default_locale: str = DEFAULT_LOCALE,
        consistency: ConsistencyLevel = DEFAULT_CONSISTENCY,
    ):
        if storage is None:
            raise ConfigError("A storage engine is required")
        if envs is None:
            envs = list(content_stores)
        if not isinstance(envs, (list, tuple)):
            raise ConfigError("envs must be a list")
        missing = [env for env in envs if env not in content_stores]
        if missing:
            raise ConfigError(f"No content store configured for: {', '.join(missing)}")

        self.storage = storage
        self.content_stores = dict(content_stores)
        self.envs = list(envs)
        self.limit = limit
        self.default_locale = default_locale
        self.lock = BuildLock(lock_store, default_locale) if lock_store is not None else None

        self.publisher = PublishCoordinator(
            storage, self.content_stores, self.envs, limit, default_locale, consistency
        )
        self.promoter = PromotionCoordinator(storage, limit, default_locale, consistency)
        self.rollbacker = RollbackCoordinator(storage, limit, default_locale, consistency)
        self.consistency = consistency

    @classmethod
    def from_config(cls, config: RegistryConfig) -> "BuildRegistry":
        """Build a registry against Postgres, Redis and HTTP content stores."""
        content_stores = {}
        for env in config.envs:
            cdn = config.cdn.get(env)
            if cdn is None:
                raise ConfigError(f"cdn.{env} is not configured")
            content_stores[env] = HttpContentStore(
                url=cdn.url,
                prefix=cdn.prefix or config.prefix or DEFAULT_PREFIX,
                check_url=cdn.check,
            )

        return cls(
            storage=PostgresStorage(config.database_url),
            content_stores=content_stores,
            lock_store=RedisLockStore(url=config.redis_url),
            envs=config.envs,
            limit=config.limit,
            default_locale=config.default_locale,
        )

    def normalize(self, spec: BuildSpec) -> BuildSpec:
        return normalize_spec(spec, self.default_locale)

    # =========================================================================
    # Lookups
    # =========================================================================

    def build(self, fingerprint: str, gz: bool = False) -> Optional[BuildFile]:
        """Get a compiled file, or its gzip variant, by fingerprint."""
        key = fingerprint + GZIP_SUFFIX if gz else fingerprint
        return self.storage.get(BuildFile, {"fingerprint": key})

    def head(self, spec: BuildSpec) -> Optional[BuildHead]:
        spec = self.normalize(spec)
        return self.storage.get(BuildHead, {"name": spec.name, "env": spec.env, "locale": spec.locale})

    def search(self, spec: BuildSpec) -> Optional[Build]:
        spec = self.normalize(spec)
        return self.storage.get(Build, {
            "name": spec.name, "env": spec.env, "version": spec.version, "locale": spec.locale,
        })

    def stream(self, spec: BuildSpec) -> Iterator[Build]:
        """All builds matching a spec; every locale when it has none."""
        return self.storage.find_all(Build, {
            "name": spec.name, "env": spec.env, "version": spec.version, "locale": spec.locale,
        })

    def heads(self, spec: BuildSpec) -> Iterator[BuildHead]:
        return self.storage.find_all(BuildHead, {
            "name": spec.name, "env": spec.env, "locale": spec.locale,
        })

    def meta(self, spec: BuildSpec) -> Optional[Dict[str, Any]]:
        """
        Build information for a (name, version) in every environment.

        Returns:
            `{name, version, envs: {env: build}}` with name/version/env
            dropped from each build, or None if no environment has it
        """
        envs = {}
        for env in self.envs:
            build = self.search(spec.with_env(env))
            if build is None:
                continue
            data = build.to_row()
            for name in ("name", "version", "env"):
                data.pop(name, None)
            envs[env] = data

        if not envs:
            return None
        return {"name": spec.name, "version": spec.version, "envs": envs}

    # =========================================================================
    # Mutations
    # =========================================================================

    def publish(
        self,
        spec: BuildSpec,
        options: Union[PublishOptions, Mapping[str, Any]],
    ) -> Build:
        """Publish a build. Raw option mappings are normalized first."""
        if not isinstance(options, PublishOptions):
            options = normalize_options(options, spec.env)
        return self.publisher.publish(spec, options)

    def promote(self, spec: BuildSpec, best_effort: bool = False) -> List[LocaleOutcome]:
        return self.promoter.promote(spec, best_effort=best_effort)

    def rollback(
        self,
        spec: BuildSpec,
        version: Optional[str] = None,
        best_effort: bool = False,
    ) -> List[LocaleOutcome]:
        return self.rollbacker.rollback(spec, version, best_effort=best_effort)

    def unpublish(self, spec: BuildSpec) -> int:
        """
        Remove builds matching `spec` with their files and HEADs.

        A HEAD is removed only while it points at a removed build.

        Returns:
            Number of storage operations committed
        """
        if not spec.name or not spec.env or not spec.version:
            raise ValidationError("unpublish requires name, env and version")

        work = UnitOfWork(self.storage, self.consistency)

        for build in self.stream(spec):
            for print_ in build.fingerprints:
                work.remove(BuildFile, {"fingerprint": print_})
            work.remove(Build, entity_key(build))

            head = self.storage.get(BuildHead, {
                "name": build.name, "env": build.env, "locale": build.locale,
            })
            if head is not None and head.build_id == build.build_id:
                work.remove(BuildHead, entity_key(head))

        count = work.commit()
        logger.info("Unpublished %s@%s (%d operations)", spec.name, spec.version, count)
        return count

    # =========================================================================
    # In-progress markers
    # =========================================================================

    def _require_lock(self) -> BuildLock:
        if self.lock is None:
            raise ConfigError("No lock store configured")
        return self.lock

    def start(self, spec: BuildSpec, build_id: str, timeout: int) -> str:
        """Mark a build as running for `timeout` seconds."""
        return self._require_lock().acquire(spec, build_id, timeout)

    def stop(self, spec: BuildSpec) -> None:
        self._require_lock().release(spec)

    def partial(self, spec: BuildSpec) -> Optional[str]:
        return self._require_lock().peek(spec)

    def active(self, spec: BuildSpec) -> List[ActiveBuild]:
        return self._require_lock().list_active(spec)

    def wipe(self, spec: BuildSpec) -> int:
        return self._require_lock().wipe(spec)
