"""Build lineage entities: Build, BuildHead and BuildFile."""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from build_registry.keys import BuildSpec


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class RollbackEntry:
    """One entry of a build's audit trail.

    `build_id` is the key of the build that this one superseded, or was
    superseded by, at `timestamp`.
    """
    timestamp: datetime
    build_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"timestamp": self.timestamp.isoformat(), "build_id": self.build_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RollbackEntry":
        return cls(timestamp=_parse_datetime(data["timestamp"]), build_id=data["build_id"])


@dataclass
class Build:
    """A published build for one (name, env, version, locale)."""

    COLLECTION: ClassVar[str] = "builds"
    KEY_FIELDS: ClassVar[Tuple[str, ...]] = ("name", "env", "version", "locale")
    JSON_FIELDS: ClassVar[Tuple[str, ...]] = (
        "fingerprints", "artifacts", "recommended", "rollback_build_ids",
    )

    name: str
    env: str
    version: str
    locale: str
    build_id: str
    cdn_url: str
    fingerprints: List[str] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)
    recommended: List[str] = field(default_factory=list)
    previous_build_id: Optional[str] = None
    create_date: datetime = field(default_factory=utcnow)
    rollback_build_ids: List[RollbackEntry] = field(default_factory=list)

    @property
    def spec(self) -> BuildSpec:
        return BuildSpec(name=self.name, env=self.env, version=self.version, locale=self.locale)

    def record_rollback(self, build_id: str, timestamp: Optional[datetime] = None) -> RollbackEntry:
        """Append an audit entry. The trail only ever grows."""
        entry = RollbackEntry(timestamp=timestamp or utcnow(), build_id=build_id)
        self.rollback_build_ids.append(entry)
        return entry

    def to_head(self) -> "BuildHead":
        """Convert to the HEAD pointer for this build's (name, env, locale).

        `create_date` is regenerated rather than copied.
        """
        return BuildHead(
            name=self.name,
            env=self.env,
            locale=self.locale,
            version=self.version,
            build_id=self.build_id,
            cdn_url=self.cdn_url,
            fingerprints=list(self.fingerprints),
            artifacts=list(self.artifacts),
            recommended=list(self.recommended),
            previous_build_id=self.previous_build_id or None,
            rollback_build_ids=list(self.rollback_build_ids),
        )

    def to_row(self) -> Dict[str, Any]:
        row = _base_row(self)
        row["rollback_build_ids"] = [entry.to_dict() for entry in self.rollback_build_ids]
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Build":
        return cls(**_base_fields(cls, row))


@dataclass
class BuildHead:
    """The current build for one (name, env, locale)."""

    COLLECTION: ClassVar[str] = "build_heads"
    KEY_FIELDS: ClassVar[Tuple[str, ...]] = ("name", "env", "locale")
    JSON_FIELDS: ClassVar[Tuple[str, ...]] = Build.JSON_FIELDS

    name: str
    env: str
    locale: str
    version: str
    build_id: str
    cdn_url: str
    fingerprints: List[str] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)
    recommended: List[str] = field(default_factory=list)
    previous_build_id: Optional[str] = None
    create_date: datetime = field(default_factory=utcnow)
    rollback_build_ids: List[RollbackEntry] = field(default_factory=list)

    @property
    def spec(self) -> BuildSpec:
        return BuildSpec(name=self.name, env=self.env, version=self.version, locale=self.locale)

    def to_row(self) -> Dict[str, Any]:
        row = _base_row(self)
        row["rollback_build_ids"] = [entry.to_dict() for entry in self.rollback_build_ids]
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BuildHead":
        return cls(**_base_fields(cls, row))


@dataclass
class BuildFile:
    """A single uploaded file, keyed by fingerprint.

    Compressed variants are stored under the `.gz` suffixed fingerprint.
    `sourcemap` is the content store key of the companion map, which shares
    the fingerprint of the file it maps and has no BuildFile of its own.
    """

    COLLECTION: ClassVar[str] = "build_files"
    KEY_FIELDS: ClassVar[Tuple[str, ...]] = ("fingerprint",)
    JSON_FIELDS: ClassVar[Tuple[str, ...]] = ()

    fingerprint: str
    build_id: str
    filename: str
    extension: str
    url: str
    name: str
    env: str
    version: str
    locale: str
    source: Optional[bytes] = None
    sourcemap: Optional[str] = None
    create_date: datetime = field(default_factory=utcnow)

    def to_row(self) -> Dict[str, Any]:
        return _base_row(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BuildFile":
        data = dict(row)
        source = data.get("source")
        if source is not None and not isinstance(source, bytes):
            data["source"] = bytes(source)
        data["create_date"] = _parse_datetime(data.get("create_date")) or utcnow()
        return cls(**_known(cls, data))


def column_names(model: Any) -> List[str]:
    """Stored columns of an entity class, in declaration order.

    ClassVar settings such as COLLECTION are not columns.
    """
    return [f.name for f in fields(model)]


def _known(model: Any, data: Dict[str, Any]) -> Dict[str, Any]:
    names = set(column_names(model))
    return {k: v for k, v in data.items() if k in names}


def _base_row(entity: Any) -> Dict[str, Any]:
    return {name: getattr(entity, name) for name in column_names(entity)}


def _base_fields(model: Any, row: Dict[str, Any]) -> Dict[str, Any]:
    """Shared row decoding for Build and BuildHead."""
    data = dict(row)
    data["rollback_build_ids"] = [
        entry if isinstance(entry, RollbackEntry) else RollbackEntry.from_dict(entry)
        for entry in (data.get("rollback_build_ids") or [])
    ]
    for name in ("fingerprints", "artifacts", "recommended"):
        data[name] = list(data.get(name) or [])
    data["create_date"] = _parse_datetime(data.get("create_date")) or utcnow()
    data["previous_build_id"] = data.get("previous_build_id") or None
    return _known(model, data)


def entity_key(entity: Any) -> Dict[str, Any]:
    """Primary key fields of an entity."""
    return {name: getattr(entity, name) for name in type(entity).KEY_FIELDS}
