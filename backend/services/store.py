"""Record store for trees, members and relationships.

SupabaseStore talks to the hosted PostgREST endpoint with the signed-in
user's token, so row-level security decides what each call may touch.
MemoryStore backs the local dev mode where no backend is configured.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

import httpx

logger = logging.getLogger("kincanvas.services.store")

TABLES = ("trees", "members", "relationships")

Row = dict[str, Any]


class StoreError(Exception):
    """A store call failed (network, authorization or constraint)."""

    def __init__(self, table: str, operation: str, message: str):
        self.table = table
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} on {table} failed: {message}")


class RecordStore:
    """Interface shared by the store backends."""

    async def select(
        self,
        table: str,
        filters: dict[str, str] | None = None,
        order_by: str | None = None,
    ) -> list[Row]:
        raise NotImplementedError

    async def select_one(self, table: str, row_id: str) -> Row | None:
        raise NotImplementedError

    async def insert(self, table: str, values: Row) -> Row:
        raise NotImplementedError

    async def update(self, table: str, row_id: str, values: Row) -> Row:
        raise NotImplementedError

    async def delete(self, table: str, row_id: str) -> None:
        raise NotImplementedError

    async def delete_relationships_touching(self, member_id: str) -> None:
        """Delete every relationship with member_id at either end."""
        raise NotImplementedError


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table}")


# ============================================================================
# Supabase (PostgREST over HTTP)
# ============================================================================

class SupabaseStore(RecordStore):
    """
    PostgREST client for a Supabase project.

    Args:
        url: Project URL, e.g. https://abc.supabase.co
        api_key: Public (anon) API key
        access_token: The signed-in user's JWT; falls back to the API key
        client: Shared httpx.AsyncClient (owned by the caller)
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self.api_key = api_key
        self.access_token = access_token or api_key
        self.client = client or httpx.AsyncClient()

    def _headers(self, single: bool = False) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
            "Prefer": "return=representation",
        }
        if single:
            headers["Accept"] = "application/vnd.pgrst.object+json"
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        operation: str,
        params: dict[str, str] | None = None,
        json: Row | None = None,
        single: bool = False,
    ) -> Any:
        _check_table(table)
        url = f"{self.rest_url}/{table}"
        logger.debug(f"{method} {url} params={params}")

        try:
            response = await self.client.request(
                method, url, params=params, json=json, headers=self._headers(single)
            )
        except httpx.HTTPError as e:
            logger.error(f"{operation} on {table} failed: {e}")
            raise StoreError(table, operation, str(e)) from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(f"{operation} on {table} failed ({response.status_code}): {message}")
            raise StoreError(table, operation, message)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def select(self, table, filters=None, order_by=None):
        params = {"select": "*"}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if order_by:
            params["order"] = f"{order_by}.asc"
        rows = await self._request("GET", table, "select", params=params)
        return rows or []

    async def select_one(self, table, row_id):
        rows = await self.select(table, {"id": row_id})
        return rows[0] if rows else None

    async def insert(self, table, values):
        return await self._request("POST", table, "insert", json=values, single=True)

    async def update(self, table, row_id, values):
        return await self._request(
            "PATCH", table, "update", params={"id": f"eq.{row_id}"}, json=values, single=True
        )

    async def delete(self, table, row_id):
        await self._request("DELETE", table, "delete", params={"id": f"eq.{row_id}"})

    async def delete_relationships_touching(self, member_id):
        await self._request(
            "DELETE",
            "relationships",
            "delete",
            params={"or": f"(source_id.eq.{member_id},target_id.eq.{member_id})"},
        )


def _error_message(response: httpx.Response) -> str:
    """Pull the human-readable part out of a PostgREST error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return body.get("message") or body.get("msg") or body.get("error") or str(body)
    return str(body)


# ============================================================================
# In-memory (backend-less dev mode)
# ============================================================================

class MemoryStore(RecordStore):
    """
    Process-local store with synthesized ids.

    Writes never fail, so callers see the new id immediately. Nothing
    survives a restart.
    """

    def __init__(self):
        self.tables: dict[str, dict[str, Row]] = {table: {} for table in TABLES}

    @staticmethod
    def new_id() -> str:
        return f"local-{uuid.uuid4().hex[:12]}"

    async def select(self, table, filters=None, order_by=None):
        _check_table(table)
        rows = [
            dict(row) for row in self.tables[table].values()
            if all(str(row.get(col)) == str(val) for col, val in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda row: row.get(order_by) or "")
        return rows

    async def select_one(self, table, row_id):
        _check_table(table)
        row = self.tables[table].get(row_id)
        return dict(row) if row else None

    async def insert(self, table, values):
        _check_table(table)
        row = {
            "id": self.new_id(),
            "created_at": datetime.now(timezone.utc).isoformat(),
            **values,
        }
        self.tables[table][row["id"]] = row
        logger.debug(f"Inserted {table} row {row['id']}")
        return dict(row)

    async def update(self, table, row_id, values):
        _check_table(table)
        if row_id not in self.tables[table]:
            raise StoreError(table, "update", f"No row with id {row_id}")
        self.tables[table][row_id].update(values)
        return dict(self.tables[table][row_id])

    async def delete(self, table, row_id):
        _check_table(table)
        self.tables[table].pop(row_id, None)

    async def delete_relationships_touching(self, member_id):
        rels = self.tables["relationships"]
        for rel_id in [
            rid for rid, row in rels.items()
            if member_id in (row.get("source_id"), row.get("target_id"))
        ]:
            del rels[rel_id]
