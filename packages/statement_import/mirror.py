"""Notion mirror for committed transactions and new entities.

Writes go through the public Notion REST API with ``httpx``. Errors returned
by Notion (``{"object": "error", "code": ..., "message": ...}``) and transport
failures are raised as ``MirrorError`` carrying the HTTP status and the Notion
error code so ``format_import_error`` can suggest a fix.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from .errors import MirrorError
from .interfaces import MirroredEntity
from .logging_setup import get_logger, short
from .models import ConfirmedTransaction, TransactionType

NOTION_API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

_TYPE_LABELS: dict[TransactionType, str] = {
    "purchase": "Expense",
    "transfer": "Transfer",
    "income": "Income",
}

_log = get_logger("statement_import.mirror")


def entity_url(page_id: str) -> str:
    """``"1a2b-3c"`` -> ``"https://www.notion.so/1a2b3c"``."""

    return f"https://www.notion.so/{page_id.replace('-', '')}"


def transaction_type_label(transaction_type: TransactionType | None) -> str:
    return _TYPE_LABELS.get(transaction_type or "purchase", "Expense")


def build_transaction_properties(txn: ConfirmedTransaction) -> dict[str, Any]:
    """Notion page properties for one confirmed transaction."""

    properties: dict[str, Any] = {
        "Description": {"title": [{"text": {"content": txn.description}}]},
        "Account": {"select": {"name": txn.account}},
        "Amount": {"number": float(txn.amount)},
        "Date": {"date": {"start": txn.date}},
        "Type": {"select": {"name": transaction_type_label(txn.transaction_type)}},
        "Online": {"checkbox": txn.online},
    }
    if txn.entity_id:
        properties["Entity"] = {"relation": [{"id": txn.entity_id}]}
    if txn.location:
        properties["Location"] = {"select": {"name": txn.location}}
    return properties


class NotionMirror:
    """``MirrorClient`` writing pages into the balance-sheet and entities databases."""

    def __init__(
        self,
        *,
        api_token: str | None,
        balance_sheet_id: str | None,
        entities_db_id: str | None,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_token = api_token
        self._balance_sheet_id = balance_sheet_id
        self._entities_db_id = entities_db_id
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=NOTION_API_URL, timeout=httpx.Timeout(timeout, connect=5.0)
        )

    def _headers(self) -> dict[str, str]:
        if not self._api_token:
            raise MirrorError("NOTION_API_TOKEN is not configured", code="unauthorized")
        return {
            "Authorization": f"Bearer {self._api_token}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        headers = self._headers()
        t0 = time.perf_counter()
        try:
            response = self._client.request(method, path, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise MirrorError(f"Notion request timed out: {exc}", code="timeout") from exc
        except httpx.HTTPError as exc:
            raise MirrorError(f"Notion request failed: {exc}", code="connection_error") from exc

        dt_ms = (time.perf_counter() - t0) * 1000.0
        if response.is_error:
            code: str | None = None
            message = response.text
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                code = body.get("code")
                message = body.get("message") or message
            _log.warning(
                "mirror:error method=%s path=%s status=%d code=%s latency_ms=%.2f",
                method,
                path,
                response.status_code,
                code,
                dt_ms,
            )
            raise MirrorError(
                f"Notion API error ({response.status_code}): {message}",
                status_code=response.status_code,
                code=code,
            )

        _log.debug("mirror:ok method=%s path=%s latency_ms=%.2f", method, path, dt_ms)
        return response.json()

    def mirror_transaction(self, txn: ConfirmedTransaction) -> str:
        if not self._balance_sheet_id:
            raise MirrorError("NOTION_BALANCE_SHEET_ID is not configured", code="object_not_found")
        page = self._request(
            "POST",
            "/pages",
            {
                "parent": {"database_id": self._balance_sheet_id},
                "properties": build_transaction_properties(txn),
            },
        )
        _log.info(
            "mirror:transaction page_id=%s description=%s", page["id"], short(txn.description)
        )
        return str(page["id"])

    def create_entity_page(self, name: str) -> MirroredEntity:
        if not self._entities_db_id:
            raise MirrorError("NOTION_ENTITIES_DB_ID is not configured", code="object_not_found")
        page = self._request(
            "POST",
            "/pages",
            {
                "parent": {"database_id": self._entities_db_id},
                "properties": {"Name": {"title": [{"text": {"content": name}}]}},
            },
        )
        page_id = str(page["id"])
        _log.info("mirror:entity page_id=%s name=%s", page_id, name)
        return MirroredEntity(page_id=page_id, url=entity_url(page_id))

    def archive_page(self, page_id: str) -> None:
        self._request("PATCH", f"/pages/{page_id}", {"archived": True})
        _log.info("mirror:archived page_id=%s", page_id)

    def close(self) -> None:
        """Close the HTTP client this mirror created; an injected client is left open."""

        if self._owns_client:
            self._client.close()


__all__ = [
    "NOTION_API_URL",
    "NotionMirror",
    "build_transaction_properties",
    "entity_url",
    "transaction_type_label",
]
