"""Shared fixtures: a fresh in-memory service graph per test."""
import pytest
import pytest_asyncio
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import to_hex
from prometheus_client import CollectorRegistry

from presence.ledger import InMemoryLedger, LedgerRelayer
from presence.metrics import Metrics
from presence.models import Geofence
from presence.services import ClaimPipeline, canonical_message
from presence.stores import InMemoryClaimLedger, InMemoryEventStore

# Eiffel Tower
EVENT_LAT = 48.8584
EVENT_LON = 2.2945


def sign_claim(account, claim_token: str) -> str:
    signed = Account.sign_message(encode_defunct(text=canonical_message(claim_token)), private_key=account.key)
    return to_hex(signed.signature)


@pytest.fixture
def sign():
    return sign_claim


@pytest.fixture
def organizer():
    return Account.create()


@pytest.fixture
def attendee():
    return Account.create()


@pytest.fixture
def metrics():
    return Metrics(service_name="presence-test", registry=CollectorRegistry())


@pytest_asyncio.fixture
async def ledger():
    return InMemoryLedger()


@pytest_asyncio.fixture
async def relayer(ledger, metrics):
    relayer = LedgerRelayer(ledger, finality_timeout=1.0, metrics=metrics)
    yield relayer
    await relayer.shutdown()


@pytest_asyncio.fixture
async def events():
    return InMemoryEventStore()


@pytest_asyncio.fixture
async def claims():
    return InMemoryClaimLedger(reservation_ttl_seconds=300)


@pytest_asyncio.fixture
async def pipeline(events, claims, relayer, metrics):
    return ClaimPipeline(
        events=events,
        claims=claims,
        relayer=relayer,
        claim_base_url="http://presence.test",
        finality_timeout=1.0,
        metrics=metrics,
    )


@pytest_asyncio.fixture
async def registered(pipeline, organizer):
    """An event with a 200 m geofence around the Eiffel Tower."""
    return await pipeline.register_event(
        organizer_identity=organizer.address,
        metadata_ref="ipfs://bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi",
        geofence=Geofence(latitude=EVENT_LAT, longitude=EVENT_LON, radius_meters=200),
        name="Tower meetup",
    )
