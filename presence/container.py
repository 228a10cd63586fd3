"""Builds the long-lived service dependencies from settings."""
from dataclasses import dataclass
from typing import Optional
import structlog

from .config import Settings
from .ledger import InMemoryLedger, LedgerClient, LedgerRelayer, Web3LedgerClient
from .metrics import Metrics
from .services import ClaimPipeline, MetadataResolver
from .stores import (
    ClaimLedger,
    EventStore,
    InMemoryClaimLedger,
    InMemoryEventStore,
    RedisClaimLedger,
    RedisEventStore,
)
from .stores.redis_store import create_client

log = structlog.get_logger()


@dataclass
class Container:
    events: EventStore
    claims: ClaimLedger
    ledger: LedgerClient
    relayer: LedgerRelayer
    pipeline: ClaimPipeline
    redis_client: Optional[object] = None

    async def close(self):
        await self.relayer.shutdown()
        if self.redis_client is not None:
            await self.redis_client.aclose()


def _create_ledger(settings: Settings) -> LedgerClient:
    if settings.LEDGER_ADAPTER == "web3":
        missing = [
            name for name in ("LEDGER_RPC_URL", "CONTRACT_ADDRESS", "RELAYER_PRIVATE_KEY")
            if not getattr(settings, name)
        ]
        if missing:
            raise ValueError(f"LEDGER_ADAPTER=web3 requires {', '.join(missing)}")
        log.info("ledger.selected", type="web3", rpc_url=settings.LEDGER_RPC_URL)
        return Web3LedgerClient(
            rpc_url=settings.LEDGER_RPC_URL,
            contract_address=settings.CONTRACT_ADDRESS,
            private_key=settings.RELAYER_PRIVATE_KEY.get_secret_value(),
            poll_interval=settings.LEDGER_POLL_INTERVAL_SECONDS,
        )

    log.info("ledger.selected", type="memory")
    return InMemoryLedger()


def build_container(settings: Settings, metrics: Optional[Metrics] = None) -> Container:
    """
    Create stores, ledger client, relayer and pipeline.

    The STORE_ADAPTER and LEDGER_ADAPTER settings select backends.
    """
    redis_client = None
    if settings.STORE_ADAPTER == "redis" and settings.REDIS_URL:
        redis_client = create_client(str(settings.REDIS_URL))
        events: EventStore = RedisEventStore(redis_client)
        claims: ClaimLedger = RedisClaimLedger(redis_client, settings.RESERVATION_TTL_SECONDS)
        log.info("store.selected", type="redis", url=str(settings.REDIS_URL))
    else:
        if settings.STORE_ADAPTER == "redis":
            log.warning(
                "store.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured",
            )
        else:
            log.info("store.selected", type="memory")
        events = InMemoryEventStore()
        claims = InMemoryClaimLedger(settings.RESERVATION_TTL_SECONDS)

    ledger = _create_ledger(settings)
    relayer = LedgerRelayer(ledger, finality_timeout=settings.LEDGER_FINALITY_TIMEOUT_SECONDS, metrics=metrics)
    if metrics is not None:
        metrics.ledger_in_flight.set_function(lambda: relayer.in_flight)

    pipeline = ClaimPipeline(
        events=events,
        claims=claims,
        relayer=relayer,
        metadata=MetadataResolver(settings.IPFS_GATEWAY_URL, timeout=settings.METADATA_FETCH_TIMEOUT_SECONDS),
        claim_base_url=settings.CLAIM_BASE_URL,
        default_claim_expiry_minutes=settings.CLAIM_EXPIRY_MINUTES,
        finality_timeout=settings.LEDGER_FINALITY_TIMEOUT_SECONDS,
        metrics=metrics,
    )
    return Container(
        events=events,
        claims=claims,
        ledger=ledger,
        relayer=relayer,
        pipeline=pipeline,
        redis_client=redis_client,
    )
