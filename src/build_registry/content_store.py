"""Content store clients for uploading build files to the CDN.

Simple interface over an HTTP object store: files are PUT under
`<prefix>/<key>` and served back from a public base URL.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from build_registry.constants import DEFAULT_HTTP_TIMEOUT_S
from build_registry.errors import UploadFailure, VerificationFailure

logger = logging.getLogger(__name__)


class ContentStore(ABC):
    """Abstract interface for the object store holding build files."""

    @abstractmethod
    def upload(self, content: bytes, key: str) -> str:
        """
        Upload content under a key.

        Args:
            content: Raw bytes to store
            key: Object key, usually `fingerprint/filename`

        Returns:
            Public URL the content is served from

        Raises:
            UploadFailure: On API or network errors
        """
        pass

    @abstractmethod
    def probe(self, url: str) -> int:
        """
        Request a public URL and return its HTTP status code.

        Raises:
            VerificationFailure: When the URL could not be requested at all
        """
        pass

    @abstractmethod
    def base_url(self) -> str:
        """Base URL recorded on builds as `cdn_url`."""
        pass


def _join(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


class HttpContentStore(ContentStore):
    """Content store speaking plain HTTP PUT/GET.

    Works against S3-compatible endpoints with public-read buckets, or any
    static file server accepting PUT. `check_url` is where uploads and
    probes go when it differs from the public `url` (e.g. an internal
    endpoint in front of the CDN).
    """

    def __init__(
        self,
        url: str,
        prefix: str = "",
        check_url: Optional[str] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_S,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url.rstrip("/")
        self.prefix = prefix
        self.check_url = (check_url or url).rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def public_url(self, key: str) -> str:
        return f"{self.url}/{_join(self.prefix, key)}"

    def upload(self, content: bytes, key: str) -> str:
        target = f"{self.check_url}/{_join(self.prefix, key)}"

        try:
            response = self._client.put(target, content=content)
            response.raise_for_status()
        except httpx.TimeoutException:
            raise UploadFailure(f"Upload of {key} timed out")
        except httpx.HTTPStatusError as e:
            raise UploadFailure(f"Upload of {key} failed: {e}")
        except httpx.RequestError as e:
            raise UploadFailure(f"Upload of {key} failed with network error: {e}")

        logger.debug("Uploaded %s (%d bytes)", key, len(content))
        return self.public_url(key)

    def probe(self, url: str) -> int:
        try:
            response = self._client.get(url)
        except httpx.RequestError as e:
            raise VerificationFailure(f"Failed to request {url}: {e}")
        return response.status_code

    def base_url(self) -> str:
        return self.url

    def close(self) -> None:
        self._client.close()
