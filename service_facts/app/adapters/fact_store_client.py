"""
Fact store client for the Facts Service.
"""

from typing import Dict, Any, Optional

from service_facts.app.adapters.service_client import ServiceClient


class FactStoreClient(ServiceClient):
    """Client for the persistent fact store."""

    service_name = "fact_store"

    async def find_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Find one record matching a filter."""
        result = await self._request("POST", "/facts/find-one", {"filter": filter}, allow_not_found=True)
        if not result:
            return None
        return result.get("record", result)

    async def sample_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Pick one random record matching a filter."""
        result = await self._request("POST", "/facts/sample", {"filter": filter, "size": 1})
        records = (result or {}).get("records") or []
        return records[0] if records else None

    async def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record and return it as stored."""
        result = await self._request("POST", "/facts", record)
        self.logger.info("Fact stored", category=record.get("category"), generated=record.get("generated"))
        return result or record
