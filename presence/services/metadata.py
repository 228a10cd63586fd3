"""Resolution of an event's metadata reference to descriptive content."""
from typing import Any, Dict, Optional
import httpx
import structlog

from ..errors import NotFound, StoreUnavailable

log = structlog.get_logger()


class MetadataResolver:
    """
    Fetches badge metadata documents.

    - ipfs://CID is fetched through the configured HTTP gateway
    - http(s):// URLs are fetched directly
    - any other scheme is returned as an unresolved reference
    """

    def __init__(self, ipfs_gateway_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self._gateway = ipfs_gateway_url.rstrip("/") + "/"
        self._timeout = timeout
        self._client = client

    def to_http_url(self, metadata_ref: str) -> Optional[str]:
        if metadata_ref.startswith("ipfs://"):
            return self._gateway + metadata_ref[len("ipfs://"):].lstrip("/")
        if metadata_ref.startswith(("http://", "https://")):
            return metadata_ref
        return None

    async def resolve(self, metadata_ref: str) -> Dict[str, Any]:
        url = self.to_http_url(metadata_ref)
        if url is None:
            return {"metadata_ref": metadata_ref}

        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            log.warning("metadata.fetch_failed", url=url, error=str(e))
            raise StoreUnavailable("Metadata could not be fetched") from e

        if response.status_code == 404:
            raise NotFound(f"Metadata {metadata_ref} not found")
        if response.status_code >= 400:
            log.warning("metadata.fetch_failed", url=url, status=response.status_code)
            raise StoreUnavailable("Metadata could not be fetched", upstream_status=response.status_code)

        try:
            document = response.json()
        except ValueError as e:
            raise StoreUnavailable("Metadata is not valid JSON") from e
        if not isinstance(document, dict):
            document = {"content": document}
        return document
