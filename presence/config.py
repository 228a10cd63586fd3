from pydantic import AnyUrl, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    MAX_REQUEST_SIZE: int = 16384
    LOG_JSON: bool = True
    # Storage backend for events and claims: "memory" or "redis"
    STORE_ADAPTER: Literal["memory", "redis"] = "memory"
    REDIS_URL: AnyUrl | None = None
    # Ledger backend: "memory" (local simulation) or "web3" (EVM JSON-RPC)
    LEDGER_ADAPTER: Literal["memory", "web3"] = "memory"
    LEDGER_RPC_URL: str | None = None
    CONTRACT_ADDRESS: str | None = None
    RELAYER_PRIVATE_KEY: SecretStr | None = None
    LEDGER_FINALITY_TIMEOUT_SECONDS: float = 30.0
    LEDGER_POLL_INTERVAL_SECONDS: float = 1.0
    # Pending reservations without a transaction are reclaimable after this
    RESERVATION_TTL_SECONDS: int = 300
    CLAIM_BASE_URL: str = "http://localhost:8080"
    CLAIM_EXPIRY_MINUTES: int = 60
    IPFS_GATEWAY_URL: str = "https://ipfs.io/ipfs/"
    METADATA_FETCH_TIMEOUT_SECONDS: float = 10.0
    # Authentication
    API_KEYS: str = ""  # Comma-separated list of organizer API keys
    REQUIRE_AUTH: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
