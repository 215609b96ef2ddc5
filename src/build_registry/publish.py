"""Two-phase publish: upload, verify, then commit build metadata."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from build_registry.constants import DEFAULT_LIMIT, DEFAULT_LOCALE, GZIP_SUFFIX
from build_registry.content_store import ContentStore
from build_registry.errors import (
    UnsupportedEnvironment,
    UploadFailure,
    ValidationError,
    VerificationFailure,
)
from build_registry.keys import BuildSpec, encode_key, file_key, normalize_spec
from build_registry.models import Build, BuildFile, BuildHead
from build_registry.options import PublishFile, PublishOptions, read_content
from build_registry.storage import DEFAULT_CONSISTENCY, ConsistencyLevel, StorageEngine
from build_registry.unit_of_work import UnitOfWork
from build_registry.workers import run_bounded

logger = logging.getLogger(__name__)

# Checked in order; the first one missing fails the publish.
REQUIRED_FILE_FIELDS = (
    ("compressed", "Missing builds compressed content."),
    ("content", "Missing builds content."),
    ("fingerprint", "Missing builds fingerprint."),
    ("extension", "Missing builds extension."),
)


@dataclass
class UploadedFile:
    """A file whose content is in the content store."""
    file: PublishFile
    source: bytes
    compressed: bytes
    url: str
    compressed_url: str
    sourcemap_key: Optional[str] = None


def validate_publish(spec: BuildSpec, options: PublishOptions, envs: Sequence[str]) -> None:
    """
    Check a publish request before any I/O.

    Raises:
        ValidationError: On a missing spec field or file field
        UnsupportedEnvironment: If `spec.env` is not allowed
    """
    if not spec.env:
        raise ValidationError("spec.env is required and must be a string.")
    if not spec.version:
        raise ValidationError("Missing version property in build spec.")
    if not spec.name:
        raise ValidationError("Missing name property in build spec.")
    if spec.env not in envs:
        raise UnsupportedEnvironment(f"Unsupported env variable: {spec.env}")
    if not options.files:
        raise ValidationError("options.files is required and must be a non-empty list.")

    for file in options.files:
        for name, message in REQUIRED_FILE_FIELDS:
            if not getattr(file, name):
                raise ValidationError(message)


class PublishCoordinator:
    """Publishes new builds.

    Content is uploaded and confirmed retrievable before any metadata is
    written, so a build never references a file missing from the content
    store. Objects uploaded by a publish that later fails stay in place.
    """

    def __init__(
        self,
        storage: StorageEngine,
        content_stores: Mapping[str, ContentStore],
        envs: Sequence[str],
        limit: int = DEFAULT_LIMIT,
        default_locale: str = DEFAULT_LOCALE,
        consistency: ConsistencyLevel = DEFAULT_CONSISTENCY,
    ):
        self.storage = storage
        self.content_stores = content_stores
        self.envs = list(envs)
        self.limit = limit
        self.default_locale = default_locale
        self.consistency = consistency

    def publish(self, spec: BuildSpec, options: PublishOptions) -> Build:
        """
        Publish a build of `options.files` for `spec`.

        Returns:
            The committed Build

        Raises:
            ValidationError / UnsupportedEnvironment: Nothing was done
            UploadFailure / VerificationFailure: Nothing was committed
            StorageError: The metadata commit failed
        """
        validate_publish(spec, options, self.envs)
        spec = normalize_spec(spec, self.default_locale)

        for file in options.files:
            logger.info(
                "Publish file for %s - filename: %s, fingerprint: %s",
                encode_key(spec), file.filename, file.fingerprint,
            )

        cdn = self.content_stores[spec.env]
        uploaded = self._upload(cdn, options.files)
        self._verify(cdn, uploaded)

        return self._commit(spec, options, cdn, uploaded)

    def _upload(self, cdn: ContentStore, files: List[PublishFile]) -> List[UploadedFile]:
        def upload(file: PublishFile) -> UploadedFile:
            try:
                source = read_content(file.content)
                compressed = read_content(file.compressed)
                sourcemap = read_content(file.sourcemap.content) if file.sourcemap else None
            except OSError as e:
                raise UploadFailure(f"Failed to read content of {file.filename}: {e}") from e

            url = cdn.upload(source, file.key)
            compressed_url = cdn.upload(compressed, file_key(file.fingerprint + GZIP_SUFFIX, file.filename))

            sourcemap_key = None
            if sourcemap is not None:
                # Referenced relative to the file that includes it
                sourcemap_key = file.sourcemap.key
                cdn.upload(sourcemap, sourcemap_key)

            return UploadedFile(
                file=file,
                source=source,
                compressed=compressed,
                url=url,
                compressed_url=compressed_url,
                sourcemap_key=sourcemap_key,
            )

        return [result for _, result in run_bounded(files, upload, self.limit)]

    def _verify(self, cdn: ContentStore, uploaded: List[UploadedFile]) -> None:
        urls = [u for item in uploaded for u in (item.url, item.compressed_url)]

        def check(url: str) -> None:
            status = cdn.probe(url)
            if status != 200:
                raise VerificationFailure(
                    f"Failed to upload {url} to CDN with statusCode {status}"
                )

        run_bounded(urls, check, self.limit)

    def _commit(
        self,
        spec: BuildSpec,
        options: PublishOptions,
        cdn: ContentStore,
        uploaded: List[UploadedFile],
    ) -> Build:
        build_id = encode_key(spec)

        by_fingerprint: Dict[str, UploadedFile] = {}
        for item in uploaded:
            by_fingerprint[item.file.fingerprint] = item

        fingerprints: List[str] = []
        for print_ in by_fingerprint:
            fingerprints.extend([print_, print_ + GZIP_SUFFIX])

        head = self.storage.get(BuildHead, {"name": spec.name, "env": spec.env, "locale": spec.locale})
        previous_build_id = None
        if head is not None:
            # Republishing the current HEAD keeps its link instead of pointing at itself
            previous_build_id = head.previous_build_id if head.build_id == build_id else head.build_id

        # A republished version keeps the audit trail of the build it replaces
        existing = self.storage.get(Build, {
            "name": spec.name, "env": spec.env, "version": spec.version, "locale": spec.locale,
        })
        trail = list(existing.rollback_build_ids) if existing is not None else []

        build = Build(
            name=spec.name,
            env=spec.env,
            version=spec.version,
            locale=spec.locale,
            build_id=build_id,
            cdn_url=cdn.base_url(),
            fingerprints=fingerprints,
            artifacts=list(options.artifacts),
            recommended=list(options.recommended),
            previous_build_id=previous_build_id,
            rollback_build_ids=trail,
        )

        work = UnitOfWork(self.storage, self.consistency)
        work.create(build)
        if options.promote:
            work.create(build.to_head())

        for print_, item in by_fingerprint.items():
            for fingerprint, url, source in (
                (print_, item.url, item.source),
                (print_ + GZIP_SUFFIX, item.compressed_url, item.compressed),
            ):
                work.create(BuildFile(
                    fingerprint=fingerprint,
                    build_id=build_id,
                    filename=item.file.filename,
                    extension=item.file.extension,
                    url=url,
                    name=spec.name,
                    env=spec.env,
                    version=spec.version,
                    locale=spec.locale,
                    source=source,
                    sourcemap=item.sourcemap_key,
                ))

        work.commit()
        logger.info("Published %s with %d files", build_id, len(fingerprints))
        return build
