"""
Collaborator interfaces consumed by the Facts Service.
"""

from typing import Dict, Any, Optional, List, Tuple, Protocol

from service_facts.app.models import Identity, Credential


class CounterStore(Protocol):
    """Key/value backend with atomic counters and sets."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        ...

    async def delete(self, *keys: str) -> int:
        ...

    async def incr_with_expiry(self, key: str, ttl: int, amount: int = 1) -> int:
        """Increment ``key`` and ensure it expires within ``ttl`` seconds, atomically."""
        ...

    async def add_to_set(self, key: str, members: List[str], ttl: Optional[int] = None) -> int:
        ...

    async def set_members(self, key: str) -> List[str]:
        ...

    async def ping(self) -> bool:
        ...


class FactStore(Protocol):
    """Persistent fact records."""

    async def find_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    async def sample_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    async def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        ...


class IdentityStore(Protocol):
    """Identities and their credentials."""

    async def find_by_credential(self, secret: str) -> Optional[Tuple[Credential, Identity]]:
        ...

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        ...

    async def get_credential(self, credential_id: str) -> Optional[Credential]:
        ...

    async def save_identity(self, identity: Identity) -> None:
        ...

    async def save_credential(self, credential: Credential) -> None:
        ...


class TextGenerator(Protocol):
    """Text completion client."""

    async def complete(self, prompt: List[Dict[str, str]], options: Optional[Dict[str, Any]] = None) -> str:
        ...
