"""Promote and rollback: move HEAD between published builds.

Both operations run per locale with bounded concurrency and append to the
audit trail of the build that becomes HEAD instead of rewriting history.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from build_registry.constants import DEFAULT_LIMIT, DEFAULT_LOCALE
from build_registry.errors import BuildNotFound, RegistryError, ValidationError
from build_registry.keys import BuildSpec, decode_key
from build_registry.models import Build, BuildHead
from build_registry.storage import DEFAULT_CONSISTENCY, ConsistencyLevel, StorageEngine
from build_registry.unit_of_work import UnitOfWork
from build_registry.workers import run_bounded

logger = logging.getLogger(__name__)

# Per-locale statuses
UPDATED = "updated"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class LocaleOutcome:
    """Result of promoting or rolling back a single locale."""
    locale: str
    status: str
    build_id: Optional[str] = None
    reason: Optional[str] = None


def _head_key(name: str, env: str, locale: str) -> dict:
    return {"name": name, "env": env, "locale": locale}


def _build_key(spec: BuildSpec) -> dict:
    return {"name": spec.name, "env": spec.env, "version": spec.version, "locale": spec.locale}


class _LocaleFanOut:
    """Shared per-locale driver for promote and rollback.

    Fail-fast by default: the first error raised for a locale propagates.
    With `best_effort`, registry errors are recorded as FAILED outcomes
    and the remaining locales still run.
    """

    def __init__(
        self,
        storage: StorageEngine,
        limit: int = DEFAULT_LIMIT,
        default_locale: str = DEFAULT_LOCALE,
        consistency: ConsistencyLevel = DEFAULT_CONSISTENCY,
    ):
        self.storage = storage
        self.limit = limit
        self.default_locale = default_locale
        self.consistency = consistency

    def _run(
        self,
        items: Sequence,
        fn: Callable[..., LocaleOutcome],
        best_effort: bool,
        what: str,
    ) -> List[LocaleOutcome]:
        def guarded(item) -> LocaleOutcome:
            try:
                return fn(item)
            except RegistryError as e:
                if not best_effort:
                    raise
                locale = getattr(item, "locale", None) or self.default_locale
                logger.warning("%s failed for locale %s: %s", what, locale, e)
                return LocaleOutcome(locale=locale, status=FAILED, reason=str(e))

        outcomes = [outcome for _, outcome in run_bounded(items, guarded, self.limit)]

        if not any(outcome.status == UPDATED for outcome in outcomes):
            raise BuildNotFound(f"No locale could be processed for {what}")
        return outcomes


class PromotionCoordinator(_LocaleFanOut):
    """Marks an already-published build as HEAD for every locale."""

    def promote(self, spec: BuildSpec, best_effort: bool = False) -> List[LocaleOutcome]:
        """
        Promote (name, env, version) to HEAD in every locale it was built for.

        When a locale is given only that locale is promoted.

        Returns:
            One LocaleOutcome per locale

        Raises:
            ValidationError: If name, env or version is missing
            BuildNotFound: If no locale could be promoted
        """
        if not spec.name or not spec.env or not spec.version:
            raise ValidationError("promote requires name, env and version")

        criteria = _build_key(spec)
        builds = list(self.storage.find_all(Build, criteria))
        return self._run(builds, self._promote_locale, best_effort, f"promote {spec.name}@{spec.version}")

    def _promote_locale(self, build: Build) -> LocaleOutcome:
        head = self.storage.get(BuildHead, _head_key(build.name, build.env, build.locale))
        mutated = False

        if (
            head is not None
            and head.build_id != build.build_id
            and head.build_id != build.previous_build_id
        ):
            build.record_rollback(head.build_id)
            mutated = True

        work = UnitOfWork(self.storage, self.consistency)
        work.create(build.to_head())
        if mutated:
            work.update(build)
        work.commit()

        logger.info("Promoted %s", build.build_id)
        return LocaleOutcome(locale=build.locale, status=UPDATED, build_id=build.build_id)


class RollbackCoordinator(_LocaleFanOut):
    """Restores an earlier build as HEAD for every locale."""

    def rollback(
        self,
        spec: BuildSpec,
        version: Optional[str] = None,
        best_effort: bool = False,
    ) -> List[LocaleOutcome]:
        """
        Roll HEAD of (name, env) back to `version`, or to each HEAD's
        previous build when no version is given.

        Locales with no build to roll back to are skipped.

        Returns:
            One LocaleOutcome per locale with a HEAD

        Raises:
            BuildNotFound: If every locale was skipped
        """
        heads = list(self.storage.find_all(BuildHead, {"name": spec.name, "env": spec.env}))

        def rollback_locale(head: BuildHead) -> LocaleOutcome:
            return self._rollback_locale(spec, head, version)

        return self._run(heads, rollback_locale, best_effort, f"rollback {spec.name} in {spec.env}")

    def _rollback_locale(
        self,
        spec: BuildSpec,
        head: BuildHead,
        version: Optional[str],
    ) -> LocaleOutcome:
        locale = head.locale
        target_version = version
        if not target_version:
            if not head.previous_build_id:
                logger.debug("No previous build for %s, skipping", head.build_id)
                return LocaleOutcome(locale=locale, status=SKIPPED, reason="no previous build")
            target_version = decode_key(head.previous_build_id).version

        target = BuildSpec(name=spec.name, env=spec.env, version=target_version, locale=locale)
        build = self.storage.get(Build, _build_key(target))
        if build is None:
            logger.debug("No build %s@%s for locale %s, skipping", spec.name, target_version, locale)
            return LocaleOutcome(locale=locale, status=SKIPPED, reason="build not found")

        # The build being displaced from HEAD
        build.record_rollback(head.build_id)

        work = UnitOfWork(self.storage, self.consistency)
        work.create(build.to_head())
        work.update(build)
        work.commit()

        logger.info("Rolled back %s to %s", head.build_id, build.build_id)
        return LocaleOutcome(locale=locale, status=UPDATED, build_id=build.build_id)
