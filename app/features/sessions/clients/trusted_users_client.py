"""Client for the trusted-users service."""

from app.features.sessions.clients.service_client import InterServiceClient


class TrustedUsersClient(InterServiceClient):
    service_name = "trusted-users"

    async def is_trusted(self, author_did: str, recipient_did: str) -> bool:
        """Whether the author currently trusts the recipient."""
        body = await self._xrpc(
            "GET",
            "social.spkeasy.graph.getTrusted",
            params={"authorDid": author_did, "recipientDid": recipient_did},
        )
        return bool(body.get("trusted"))
