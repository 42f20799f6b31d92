"""Remote task store contract and its implementations.

Every store speaks the same asynchronous protocol: records go in, the
canonical stored form comes back and callers adopt it as the source of truth.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Protocol, Set

import httpx

from .models import Config, TaskRecord
from .storage import Storage, StorageError, TaskNotFoundError


class StoreError(RuntimeError):
    """Raised when the remote store cannot complete a request."""


class NotFound(StoreError):
    """Raised by ``update`` when the record no longer exists remotely."""


class RemoteStore(Protocol):
    """Durable task storage keyed by task id."""

    async def create(self, record: TaskRecord) -> TaskRecord:
        """Persist a new record and return its canonical form."""

    async def update(self, record: TaskRecord) -> TaskRecord:
        """Overwrite an existing record; raise ``NotFound`` when it is gone."""

    async def delete(self, task_id: str) -> None:
        """Remove a record; missing ids are ignored."""

    async def list(self) -> List[TaskRecord]:
        """Return every record, in no particular order."""

    async def batch_update(self, records: List[TaskRecord]) -> List[TaskRecord]:
        """Update many records, returning only the ones that succeeded."""


def _copy(record: TaskRecord) -> TaskRecord:
    return TaskRecord(
        id=record.id,
        title=record.title.strip(),
        completed=record.completed,
        sort_order=record.sort_order,
    )


class InMemoryTaskStore:
    """Dictionary backed store, handy for tests and dry runs.

    ``fail_ids`` makes create/update/delete raise ``StoreError`` for the given
    ids, and ``offline`` makes every call fail.
    """

    def __init__(self, records: Optional[Iterable[TaskRecord]] = None) -> None:
        self._records: Dict[str, TaskRecord] = {}
        for record in records or ():
            self._records[record.id] = _copy(record)
        self.fail_ids: Set[str] = set()
        self.offline = False
        self.calls: List[str] = []

    def _check(self, operation: str, task_id: Optional[str] = None) -> None:
        self.calls.append(operation)
        if self.offline:
            raise StoreError(f"{operation} failed: store is offline")
        if task_id is not None and task_id in self.fail_ids:
            raise StoreError(f"{operation} failed for task {task_id}")

    async def create(self, record: TaskRecord) -> TaskRecord:
        self._check("create", record.id)
        if record.id in self._records:
            raise StoreError(f"Task with id {record.id} already exists")
        stored = _copy(record)
        self._records[stored.id] = stored
        return _copy(stored)

    async def update(self, record: TaskRecord) -> TaskRecord:
        self._check("update", record.id)
        if record.id not in self._records:
            raise NotFound(f"Task with id {record.id} not found")
        stored = _copy(record)
        self._records[stored.id] = stored
        return _copy(stored)

    async def delete(self, task_id: str) -> None:
        self._check("delete", task_id)
        self._records.pop(task_id, None)

    async def list(self) -> List[TaskRecord]:
        self._check("list")
        return [_copy(record) for record in self._records.values()]

    async def batch_update(self, records: List[TaskRecord]) -> List[TaskRecord]:
        self._check("batch_update")
        updated = []
        for record in records:
            if record.id in self.fail_ids or record.id not in self._records:
                continue
            stored = _copy(record)
            self._records[stored.id] = stored
            updated.append(_copy(stored))
        return updated


class LocalTaskStore:
    """Store backed by the local SQLite database.

    SQLite work runs in a worker thread so the event loop stays responsive.
    """

    def __init__(self, storage: Optional[Storage] = None) -> None:
        self._storage = storage or Storage()

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except TaskNotFoundError as exc:
            raise NotFound(str(exc)) from exc
        except StorageError as exc:
            raise StoreError(str(exc)) from exc

    async def create(self, record: TaskRecord) -> TaskRecord:
        return await self._run(self._storage.add_task, record)

    async def update(self, record: TaskRecord) -> TaskRecord:
        return await self._run(self._storage.update_task, record)

    async def delete(self, task_id: str) -> None:
        await self._run(self._storage.delete_task, task_id)

    async def list(self) -> List[TaskRecord]:
        return await self._run(lambda: list(self._storage.list_tasks()))

    async def batch_update(self, records: List[TaskRecord]) -> List[TaskRecord]:
        return await self._run(self._storage.update_many, list(records))


class HttpTaskStore:
    """Store that talks to the verbalist task API over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers: Dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    @classmethod
    def from_config(cls, cfg: Config) -> "HttpTaskStore":
        if not cfg.server_url:
            raise StoreError("No task server configured.")
        return cls(cfg.server_url, token=cfg.server_token, timeout=cfg.api_timeout, verify=cfg.verify_ssl)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            if exc.response.status_code == 404 and method == "PUT":
                raise NotFound(detail) from exc
            raise StoreError(f"{exc.response.status_code} {method} {url}: {detail}") from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"Request to task server failed ({method} {url}): {exc}") from exc
        return response

    async def create(self, record: TaskRecord) -> TaskRecord:
        response = await self._request("POST", "/tasks", json=record.to_dict())
        return TaskRecord.from_dict(response.json())

    async def update(self, record: TaskRecord) -> TaskRecord:
        response = await self._request("PUT", f"/tasks/{record.id}", json=record.to_dict())
        return TaskRecord.from_dict(response.json())

    async def delete(self, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{task_id}")

    async def list(self) -> List[TaskRecord]:
        response = await self._request("GET", "/tasks")
        return [TaskRecord.from_dict(row) for row in response.json()]

    async def batch_update(self, records: List[TaskRecord]) -> List[TaskRecord]:
        response = await self._request("POST", "/tasks/batch", json=[record.to_dict() for record in records])
        return [TaskRecord.from_dict(row) for row in response.json()]


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        return str(payload.get("detail", payload))
    return str(payload)


def open_store(cfg: Config, offline: bool = False) -> RemoteStore:
    """Return the HTTP store when a server is configured, else the local one."""

    if offline or not cfg.server_url:
        logging.debug("Using local task store")
        return LocalTaskStore()
    logging.debug("Using task server at %s", cfg.server_url)
    return HttpTaskStore.from_config(cfg)
