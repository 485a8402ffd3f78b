"""
Document store collaborators.

The engine talks to persistence through the DocumentStore protocol:
- load_document(id) -> raw document dict, or None if the id is unknown
- save_document(...) -> the document id (newly assigned on first save)
- list_documents(owner_id) -> summaries, newest first

Two implementations:
- JsonFileDocumentStore: one JSON file per document in a directory
- HttpDocumentStore: a remote REST store reached with httpx
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from canvas_core.errors import PersistenceError
from canvas_core.models import (
    Component,
    Connection,
    DocumentSummary,
    ModelKind,
    ReportEntry,
    Viewport,
)

logger = logging.getLogger(__name__)


def generate_document_id() -> str:
    return f"model-{uuid.uuid4().hex[:8]}"


def build_payload(
    owner_id: str,
    document_id: Optional[str],
    name: str,
    kind: ModelKind,
    components: list[Component],
    connections: list[Connection],
    viewport: Optional[Viewport],
    reports: list[ReportEntry],
) -> dict[str, Any]:
    """Persisted JSON shape of a document (camelCase keys)."""
    return {
        "id": document_id,
        "name": name,
        "modelType": ModelKind(kind).value,
        "ownerId": owner_id,
        "components": [c.model_dump(mode="json") for c in components],
        "connections": [c.model_dump(mode="json", by_alias=True) for c in connections],
        "viewport": viewport.model_dump(mode="json") if viewport else None,
        "reports": [r.model_dump(mode="json", by_alias=True) for r in reports],
        "modifiedDate": datetime.now(timezone.utc).isoformat(),
    }


class DocumentStore(Protocol):
    """What the session controller needs from persistence."""

    async def load_document(self, document_id: str) -> Optional[dict[str, Any]]:
        ...

    async def save_document(
        self,
        owner_id: str,
        document_id: Optional[str],
        name: str,
        kind: ModelKind,
        components: list[Component],
        connections: list[Connection],
        viewport: Optional[Viewport],
        reports: list[ReportEntry],
    ) -> str:
        ...

    async def list_documents(self, owner_id: str) -> list[DocumentSummary]:
        ...


class JsonFileDocumentStore:
    """
    Stores each document as <data_dir>/<id>.json.

    File I/O runs in a worker thread so the event loop stays responsive.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def _path_for(self, document_id: str) -> Path:
        # Ids are used as file names; refuse anything that could escape data_dir
        if not document_id or "/" in document_id or "\\" in document_id or document_id.startswith("."):
            raise PersistenceError(f"Invalid document id: {document_id!r}")
        return self.data_dir / f"{document_id}.json"

    # --- Sync helpers (run in a thread) ---

    def _read(self, document_id: str) -> Optional[dict[str, Any]]:
        path = self._path_for(document_id)
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Document {document_id} is not valid JSON: {e}") from e
        except OSError as e:
            raise PersistenceError(f"Failed to read document {document_id}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Document {document_id} is not a JSON object")
        return data

    def _write(self, payload: dict[str, Any]) -> str:
        path = self._path_for(payload["id"])
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            with open(tmp, "w") as f:
                json.dump(payload, f, indent=2)
            tmp.replace(path)
        except OSError as e:
            raise PersistenceError(f"Failed to write document {payload['id']}: {e}") from e
        return payload["id"]

    def _list(self, owner_id: str) -> list[DocumentSummary]:
        if not self.data_dir.exists():
            return []

        summaries = []
        for path in self.data_dir.glob("*.json"):
            try:
                with open(path, "r") as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    logger.warning(f"Skipping non-document file {path.name}")
                    continue
                if data.get("ownerId") not in (None, owner_id):
                    continue
                summaries.append(DocumentSummary.model_validate({
                    "id": data.get("id") or path.stem,
                    "name": data.get("name") or path.stem,
                    "modelType": data.get("modelType") or ModelKind.INFRASTRUCTURE,
                    "modifiedDate": data.get("modifiedDate"),
                }))
            except (json.JSONDecodeError, OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable document file {path.name}: {e}")

        summaries.sort(key=lambda s: s.modified_at.timestamp() if s.modified_at else 0, reverse=True)
        return summaries

    # --- DocumentStore protocol ---

    async def load_document(self, document_id: str) -> Optional[dict[str, Any]]:
        return await asyncio.to_thread(self._read, document_id)

    async def save_document(
        self,
        owner_id: str,
        document_id: Optional[str],
        name: str,
        kind: ModelKind,
        components: list[Component],
        connections: list[Connection],
        viewport: Optional[Viewport],
        reports: list[ReportEntry],
    ) -> str:
        payload = build_payload(
            owner_id,
            document_id or generate_document_id(),
            name,
            kind,
            components,
            connections,
            viewport,
            reports,
        )
        saved_id = await asyncio.to_thread(self._write, payload)
        logger.info(f"Saved document {saved_id} to {self.data_dir}")
        return saved_id

    async def list_documents(self, owner_id: str) -> list[DocumentSummary]:
        return await asyncio.to_thread(self._list, owner_id)


class HttpDocumentStore:
    """
    Remote document store speaking JSON over HTTP.

    Endpoints (relative to base_url):
        GET  /models/{id}         -> document, 404 if unknown
        POST /models              -> {"id": ...} (create)
        PUT  /models/{id}         -> {"id": ...} (update)
        GET  /models?ownerId=...  -> [summary, ...]
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self._timeout, transport=self._transport
        )

    async def _request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, endpoint, **kwargs)
        except httpx.HTTPError as e:
            raise PersistenceError(f"Document store unreachable: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str):
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except (ValueError, AttributeError):
                detail = response.text
            raise PersistenceError(f"Failed to {action}: {response.status_code} {detail}")

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise PersistenceError(f"Failed to {action}: invalid JSON response") from e

    async def load_document(self, document_id: str) -> Optional[dict[str, Any]]:
        action = f"load document {document_id}"
        response = await self._request("GET", f"/models/{document_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, action)
        document = self._json(response, action)
        if not isinstance(document, dict):
            raise PersistenceError(f"Failed to {action}: expected a JSON object")
        return document

    async def save_document(
        self,
        owner_id: str,
        document_id: Optional[str],
        name: str,
        kind: ModelKind,
        components: list[Component],
        connections: list[Connection],
        viewport: Optional[Viewport],
        reports: list[ReportEntry],
    ) -> str:
        action = f"save document {document_id or '(new)'}"
        payload = build_payload(
            owner_id, document_id, name, kind, components, connections, viewport, reports
        )
        if document_id:
            response = await self._request("PUT", f"/models/{document_id}", json=payload)
        else:
            payload.pop("id")
            response = await self._request("POST", "/models", json=payload)
        self._raise_for_status(response, action)

        body = self._json(response, action) if response.content else {}
        saved_id = (body.get("id") if isinstance(body, dict) else None) or document_id
        if not saved_id:
            raise PersistenceError("Document store did not return an id for the new document")
        return saved_id

    async def list_documents(self, owner_id: str) -> list[DocumentSummary]:
        response = await self._request("GET", "/models", params={"ownerId": owner_id})
        self._raise_for_status(response, "list documents")
        items = self._json(response, "list documents")
        if not isinstance(items, list):
            raise PersistenceError("Failed to list documents: expected a JSON array")
        try:
            return [DocumentSummary.model_validate(item) for item in items]
        except ValidationError as e:
            raise PersistenceError(f"Failed to list documents: {e.error_count()} invalid entries") from e
