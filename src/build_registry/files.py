"""Collect compiled files from a build output directory."""

import gzip
import hashlib
from pathlib import Path
from typing import List

from build_registry.options import PublishFile


def fingerprint(content: bytes) -> str:
    """Content-derived identifier for a file."""
    return hashlib.md5(content).hexdigest()


def collect_files(directory: Path) -> List[PublishFile]:
    """
    Read every file under `directory` into a PublishFile.

    Sourcemaps are returned as-is; normalize_options attaches them to
    the files they map.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Build directory not found: {directory}")

    files = []
    for path in sorted(p for p in directory.rglob("*") if p.is_file()):
        content = path.read_bytes()
        files.append(PublishFile(
            filename=path.relative_to(directory).as_posix(),
            extension=path.suffix,
            fingerprint=fingerprint(content),
            content=content,
            compressed=gzip.compress(content),
        ))
    return files
