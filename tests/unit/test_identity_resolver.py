import httpx
import pytest

from app.errors import ResolutionError
from app.features.identity_cache.services.identity_resolver import BlueskyIdentityResolver

HOST = "https://api.bsky.app/"


def _resolver(handler):
    return BlueskyIdentityResolver(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_resolve_returns_handle():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json={"did": "did:plc:a", "handle": "alice.bsky.social"})

    resolver = _resolver(handler)
    identity = await resolver.resolve("did:plc:a", HOST)
    await resolver.close()

    assert identity.handle == "alice.bsky.social"
    assert seen[0].path == "/xrpc/app.bsky.actor.getProfile"
    assert seen[0].params["actor"] == "did:plc:a"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": "InvalidRequest", "message": "Profile not found"}),
        httpx.Response(200, json={"did": "did:plc:a"}),
        httpx.Response(200, json=["unexpected"]),
        httpx.Response(200, content=b"not json"),
    ],
)
async def test_resolve_failures_raise_resolution_error(response):
    resolver = _resolver(lambda request: response)

    with pytest.raises(ResolutionError) as exc_info:
        await resolver.resolve("did:plc:a", HOST)

    assert exc_info.value.failed_dids == ["did:plc:a"]


@pytest.mark.asyncio
async def test_transport_error_raises_resolution_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    resolver = _resolver(handler)

    with pytest.raises(ResolutionError):
        await resolver.resolve("did:plc:a", HOST)


@pytest.mark.asyncio
async def test_resolve_before_open_fails():
    with pytest.raises(RuntimeError):
        await BlueskyIdentityResolver().resolve("did:plc:a", HOST)
