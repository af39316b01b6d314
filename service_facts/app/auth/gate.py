"""
Credential resolution for the Facts Service.
"""

import time
from typing import Mapping, Optional, Callable

from shared.logging import get_logger
from shared.errors import (
    MissingCredential,
    UnknownCredential,
    CredentialInactive,
    OriginNotAllowed,
    IdentityInactive,
)

from service_facts.app.models import (
    AuthResult,
    ClientContext,
    CredentialKind,
    CredentialMaterial,
)
from service_facts.app.protocols import IdentityStore


def credential_from_headers(headers: Mapping[str, str]) -> Optional[CredentialMaterial]:
    """Extract credential material from ``X-API-Key`` or a Bearer token."""
    api_key = headers.get("X-API-Key") or headers.get("x-api-key")
    if api_key:
        return CredentialMaterial(kind=CredentialKind.API_KEY, secret=api_key.strip())

    auth_header = headers.get("Authorization") or headers.get("authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()  # Remove "Bearer " prefix
        if token:
            return CredentialMaterial(kind=CredentialKind.SESSION, secret=token)

    return None


class AuthGate:
    """Resolves presented credentials to an identity and its effective rate limit.

    Read-only: usage counters are left to the usage recorder.
    """

    def __init__(self, identity_store: IdentityStore, clock: Callable[[], float] = time.time):
        self.identity_store = identity_store
        self.clock = clock
        self.logger = get_logger("facts.auth_gate")

    async def resolve(self, material: Optional[CredentialMaterial], context: Optional[ClientContext] = None) -> AuthResult:
        """Authenticate a request, raising an ``AuthError`` subclass on rejection."""
        context = context or ClientContext()

        if material is None or not material.secret:
            raise MissingCredential()

        found = await self.identity_store.find_by_credential(material.secret)
        if found is None:
            self.logger.warning("Unknown credential presented", kind=material.kind.value)
            raise UnknownCredential()

        credential, identity = found
        if credential.kind != material.kind:
            self.logger.warning(
                "Credential presented as wrong kind",
                credential=credential.masked_secret,
                expected=credential.kind.value,
                presented=material.kind.value
            )
            raise UnknownCredential()

        now = self.clock()
        if not credential.is_usable(now):
            self.logger.warning(
                "Inactive credential presented",
                credential=credential.masked_secret,
                status=credential.status.value,
                expired=credential.is_expired(now)
            )
            raise CredentialInactive(details={"status": credential.status.value})

        if credential.ip_whitelist and context.ip not in credential.ip_whitelist:
            self.logger.warning("IP not whitelisted", credential=credential.masked_secret, ip=context.ip)
            raise OriginNotAllowed(details={"ip": context.ip})

        if credential.allowed_origins and context.origin not in credential.allowed_origins:
            self.logger.warning("Origin not allowed", credential=credential.masked_secret, origin=context.origin)
            raise OriginNotAllowed(details={"origin": context.origin})

        if identity is None or not identity.is_active(now):
            self.logger.warning(
                "Inactive identity",
                identity_id=credential.identity_id,
                status=identity.status.value if identity else None
            )
            raise IdentityInactive()

        if credential.rate_limit_override is not None:
            rate_limit, source = credential.rate_limit_override, "credential"
        else:
            rate_limit, source = identity.policy.rate_limit, "plan"

        self.logger.info(
            "Request authenticated",
            identity_id=identity.identity_id,
            credential=credential.masked_secret,
            kind=credential.kind.value,
            plan=identity.plan.value
        )

        return AuthResult(
            identity=identity,
            credential=credential,
            rate_limit=rate_limit,
            rate_limit_source=source
        )
