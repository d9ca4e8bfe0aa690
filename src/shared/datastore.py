"""
Datastore client (Supabase PostgREST over httpx).

Covers the three things the service needs from the datastore:
- similarity-search procedures (``POST /rest/v1/rpc/<name>``)
- the conversation message log (``messages`` table)
- conversation creation (``chats`` table)
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from .errors import DatastoreError

logger = structlog.get_logger()


class DatastoreClient:
    """Thin async client for the PostgREST API in front of the datastore."""

    def __init__(
        self,
        rest_url: str,
        service_key: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            rest_url: PostgREST base URL (ChatConfig.datastore_rest_url)
            service_key: Service-role key sent as apikey and bearer token
            timeout: Per-call timeout in seconds
            client: Optional pre-built httpx client (tests use MockTransport)
        """
        self.rest_url = rest_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
            },
        )

    async def rpc(self, name: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Call a stored procedure and return its rows.

        Raises httpx.HTTPError on transport or status failures; the retrieval
        gateway decides how a failed category degrades.
        """
        response = await self.client.post(f"{self.rest_url}/rpc/{name}", json=params)
        response.raise_for_status()
        rows = response.json()
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise ValueError(f"rpc {name} returned {type(rows).__name__}, expected a list")
        return rows

    async def insert(self, table: str, row: Dict[str, Any], returning: bool = False) -> Optional[Dict[str, Any]]:
        """Insert one row; with returning=True the stored row comes back."""
        headers = {"Prefer": "return=representation"} if returning else {"Prefer": "return=minimal"}
        response = await self.client.post(f"{self.rest_url}/{table}", json=row, headers=headers)
        response.raise_for_status()
        if not returning:
            return None
        data = response.json()
        if isinstance(data, list):
            return data[0] if data else None
        return data

    async def create_chat(self) -> str:
        """Create an empty conversation and return its id."""
        try:
            row = await self.insert("chats", {}, returning=True)
        except httpx.HTTPError as e:
            raise DatastoreError(detail=f"create chat failed: {e}")
        if not row or "id" not in row:
            raise DatastoreError(detail="create chat returned no id")
        logger.info("chat_created", chat_id=str(row["id"]))
        return str(row["id"])

    async def log_message(self, chat_id: Optional[str], role: str, content: str):
        """Append a turn to the message log. No-op without a conversation id.

        A failed write is logged and does not fail the request.
        """
        if not chat_id:
            return
        try:
            await self.insert("messages", {"chat_id": chat_id, "role": role, "content": content})
        except httpx.HTTPError as e:
            logger.warning("message_log_failed", chat_id=chat_id, role=role, error=str(e))

    async def ping(self) -> bool:
        """Check the REST endpoint answers."""
        try:
            response = await self.client.get(f"{self.rest_url}/")
            return response.status_code < 500
        except httpx.HTTPError:
            return False

    async def close(self):
        await self.client.aclose()
