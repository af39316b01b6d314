"""
Identity store client for the Facts Service.
"""

from typing import Optional, Tuple

from service_facts.app.adapters.service_client import ServiceClient
from service_facts.app.models import Identity, Credential


class IdentityStoreClient(ServiceClient):
    """Client for the identity and credential store."""

    service_name = "identity_store"

    async def find_by_credential(self, secret: str) -> Optional[Tuple[Credential, Identity]]:
        """Look up a credential by its secret together with its owning identity."""
        result = await self._request("POST", "/credentials/lookup", {"secret": secret}, allow_not_found=True)
        if not result or not result.get("credential"):
            return None

        credential = Credential.from_record(result["credential"])
        identity = Identity.from_record(result["identity"]) if result.get("identity") else None
        return credential, identity

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        result = await self._request("GET", f"/identities/{identity_id}", allow_not_found=True)
        return Identity.from_record(result) if result else None

    async def get_credential(self, credential_id: str) -> Optional[Credential]:
        result = await self._request("GET", f"/credentials/{credential_id}", allow_not_found=True)
        return Credential.from_record(result) if result else None

    async def save_identity(self, identity: Identity) -> None:
        await self._request("PUT", f"/identities/{identity.identity_id}", identity.to_record())

    async def save_credential(self, credential: Credential) -> None:
        await self._request("PUT", f"/credentials/{credential.credential_id}", credential.to_record())
