"""Constants for the build registry."""

import os

# Every lookup is made per locale, so specs without one fall back to this.
DEFAULT_LOCALE = "en-US"

# Fan-out ceiling for uploads, CDN checks and per-locale operations
DEFAULT_LIMIT = 10

# Default content store prefix (bucket / path segment)
DEFAULT_PREFIX = "wrhs"

DEFAULT_CONFIG_PATH = os.getenv("BFFS_CONFIG", "bffs.yml")

# Key layout
KEY_DELIMITER = "!"
ACTIVE_SENTINEL = "~~active"
GZIP_SUFFIX = ".gz"
SOURCEMAP_EXTENSION = ".map"

# Timeout for content store requests (seconds)
DEFAULT_HTTP_TIMEOUT_S = float(os.getenv("BFFS_HTTP_TIMEOUT_S", "30"))
