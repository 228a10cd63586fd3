"""Tests for metadata reference resolution."""
import httpx
import pytest

from presence.errors import NotFound, StoreUnavailable
from presence.services import MetadataResolver


def resolver_with(handler) -> MetadataResolver:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MetadataResolver("https://gateway.test/ipfs/", client=client)


def test_to_http_url():
    resolver = MetadataResolver("https://gateway.test/ipfs")
    assert resolver.to_http_url("ipfs://bafy123/meta.json") == "https://gateway.test/ipfs/bafy123/meta.json"
    assert resolver.to_http_url("https://example.org/m.json") == "https://example.org/m.json"
    assert resolver.to_http_url("ar://tx") is None


@pytest.mark.asyncio
async def test_unknown_scheme_returned_as_reference():
    resolver = MetadataResolver("https://gateway.test/ipfs/")
    assert await resolver.resolve("ar://tx") == {"metadata_ref": "ar://tx"}


@pytest.mark.asyncio
async def test_resolve_json_document():
    resolver = resolver_with(lambda request: httpx.Response(200, json={"name": "Badge"}))
    assert await resolver.resolve("ipfs://bafy123") == {"name": "Badge"}


@pytest.mark.asyncio
async def test_non_object_document_wrapped():
    resolver = resolver_with(lambda request: httpx.Response(200, json=["a", "b"]))
    assert await resolver.resolve("ipfs://bafy123") == {"content": ["a", "b"]}


@pytest.mark.asyncio
async def test_missing_document():
    resolver = resolver_with(lambda request: httpx.Response(404))
    with pytest.raises(NotFound):
        await resolver.resolve("ipfs://bafy123")


@pytest.mark.asyncio
async def test_gateway_error():
    resolver = resolver_with(lambda request: httpx.Response(502))
    with pytest.raises(StoreUnavailable) as exc:
        await resolver.resolve("ipfs://bafy123")
    assert exc.value.details["upstream_status"] == 502


@pytest.mark.asyncio
async def test_connection_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    resolver = resolver_with(handler)
    with pytest.raises(StoreUnavailable):
        await resolver.resolve("https://example.org/m.json")


@pytest.mark.asyncio
async def test_invalid_json():
    resolver = resolver_with(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(StoreUnavailable):
        await resolver.resolve("ipfs://bafy123")
