"""API key authentication for organizer endpoints."""
from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from typing import Optional
import secrets
import structlog
from ..config import get_settings

log = structlog.get_logger()

api_key_header = APIKeyHeader(name="X-Presence-Key", auto_error=False)


class APIKeyRegistry:
    """
    In-memory API key registry.

    Keys are loaded from the API_KEYS setting at startup.
    """

    def __init__(self, keys: str = ""):
        self._keys: set[str] = set()
        self._load_keys(keys)

    def _load_keys(self, keys: str):
        for key in keys.split(","):
            key = key.strip()
            if key:
                self._keys.add(key)
        log.info("api_keys.loaded", count=len(self._keys))

    def validate(self, key: str) -> bool:
        """Constant-time membership check."""
        return any(secrets.compare_digest(key, known) for known in self._keys)

    def add_key(self, key: str):
        self._keys.add(key)
        log.info("api_key.added")

    def remove_key(self, key: str) -> bool:
        if key in self._keys:
            self._keys.discard(key)
            log.info("api_key.removed")
            return True
        return False

    def count(self) -> int:
        return len(self._keys)


registry = APIKeyRegistry(get_settings().API_KEYS)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """
    Dependency guarding organizer endpoints.

    Enforced only when REQUIRE_AUTH is set and at least one key is
    configured.

    Raises:
        HTTPException: 401 if the key is missing, 403 if it is unknown
    """
    if not get_settings().REQUIRE_AUTH or registry.count() == 0:
        log.debug("auth.skipped")
        return "anonymous"

    if not api_key:
        log.warning("auth.failed", reason="missing_key")
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide X-Presence-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not registry.validate(api_key):
        log.warning("auth.failed", reason="invalid_key")
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    log.debug("auth.success")
    return api_key
