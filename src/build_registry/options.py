"""Publish options: the files of a build and what to record about them."""

import posixpath
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from build_registry.constants import SOURCEMAP_EXTENSION
from build_registry.keys import file_key

# Content is either the bytes themselves or a path to read them from.
Content = Union[bytes, str, Path]


@dataclass
class PublishFile:
    """One compiled file of a build."""
    filename: Optional[str] = None
    extension: Optional[str] = None
    fingerprint: Optional[str] = None
    content: Optional[Content] = None
    compressed: Optional[Content] = None
    sourcemap: Optional["PublishFile"] = None

    @property
    def key(self) -> str:
        return file_key(self.fingerprint, self.filename)

    @classmethod
    def from_value(cls, value: Union["PublishFile", Mapping[str, Any]]) -> "PublishFile":
        if isinstance(value, cls):
            return value
        names = {f.name for f in fields(cls)}
        known = {k: v for k, v in value.items() if k in names}
        if isinstance(known.get("sourcemap"), Mapping):
            known["sourcemap"] = cls.from_value(known["sourcemap"])
        return cls(**known)


@dataclass
class PublishOptions:
    """Normalized publish options for one environment."""
    files: List[PublishFile] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)
    recommended: List[str] = field(default_factory=list)
    promote: bool = True


def read_content(content: Content) -> bytes:
    """Return content bytes, reading from disk when given a path."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    return Path(content).read_bytes()


def _file_path(file: Optional[PublishFile]) -> Optional[str]:
    if file and file.fingerprint and file.filename:
        return posixpath.join(file.fingerprint, file.filename)
    return None


def normalize_options(
    options: Optional[Mapping[str, Any]] = None,
    env: Optional[str] = None,
) -> PublishOptions:
    """
    Turn raw publish options into a consistent set for one environment.

    Args:
        options: Mapping with optional keys:
            - files: list of PublishFile (or dicts), sourcemaps included
            - config: build config, `{"files": {env: [filename, ...]}}`
            - promote: set False to publish without moving HEAD
        env: Environment being published to

    Returns:
        PublishOptions with sourcemaps attached to the files they map,
        and `artifacts` / `recommended` as `fingerprint/filename` paths
    """
    options = options or {}
    config = options.get("config") or {}
    env_files: Mapping[str, List[str]] = config.get("files") or {}

    all_files = [PublishFile.from_value(f) for f in (options.get("files") or [])]
    primary = [f for f in all_files if f.extension != SOURCEMAP_EXTENSION]
    sourcemaps = [f for f in all_files if f.extension == SOURCEMAP_EXTENSION]

    # A map named `app.js.map` belongs to `app.js`
    maps_by_target: Dict[str, PublishFile] = {}
    for sourcemap in sourcemaps:
        target, _ = posixpath.splitext(sourcemap.filename or "")
        maps_by_target[target] = sourcemap

    def by_basename(path: str) -> Optional[str]:
        base = posixpath.basename(path)
        match = next((f for f in all_files if posixpath.basename(f.filename or "") == base), None)
        return _file_path(match)

    # Artifacts are the union of every environment's configured files
    configured: List[str] = []
    for names in env_files.values():
        for name in names or []:
            if name not in configured:
                configured.append(name)

    if configured:
        artifacts = [p for p in map(by_basename, configured) if p]
    else:
        artifacts = [p for p in map(_file_path, primary) if p]

    recommended = [p for p in map(by_basename, env_files.get(env) or []) if p]

    files = []
    for file in primary:
        sourcemap = maps_by_target.get(file.filename)
        if sourcemap is not None:
            # The map is served next to the file it maps
            file = replace(file, sourcemap=replace(sourcemap, fingerprint=file.fingerprint))
        files.append(file)

    return PublishOptions(
        files=files,
        artifacts=artifacts,
        recommended=recommended,
        promote=options.get("promote") is not False,
    )
