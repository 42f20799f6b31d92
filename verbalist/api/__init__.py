"""FastAPI application serving the verbalist task store."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from ..models import TaskRecord
from ..storage import Storage, StorageError, TaskNotFoundError

API_TOKEN = os.getenv("VERBALIST_API_TOKEN")


class HealthResponse(BaseModel):
    status: str = "ok"
    tasks: int


class TaskPayload(BaseModel):
    id: str
    title: str = Field(min_length=1)
    completed: bool = False
    sort_order: int = 0


def _record_to_payload(record: TaskRecord) -> TaskPayload:
    return TaskPayload(
        id=record.id,
        title=record.title,
        completed=record.completed,
        sort_order=record.sort_order,
    )


def _payload_to_record(payload: TaskPayload) -> TaskRecord:
    return TaskRecord(
        id=payload.id,
        title=payload.title,
        completed=payload.completed,
        sort_order=payload.sort_order,
    )


def create_app(db_path: Optional[Path] = None, token: Optional[str] = API_TOKEN) -> FastAPI:
    """Build the API around a task database."""

    storage = Storage(db_path=db_path)

    async def require_token(authorization: Optional[str] = Header(None)) -> None:
        if token and authorization != f"Bearer {token}":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing token")

    app = FastAPI(
        title="verbalist API",
        description="Task storage backend for verbalist clients.",
        version="0.1.0",
        dependencies=[Depends(require_token)],
    )

    @app.get("/health", response_model=HealthResponse)
    async def healthcheck() -> HealthResponse:
        records = await run_in_threadpool(lambda: list(storage.list_tasks()))
        return HealthResponse(tasks=len(records))

    @app.get("/tasks", response_model=List[TaskPayload])
    async def list_tasks() -> List[TaskPayload]:
        records = await run_in_threadpool(lambda: list(storage.list_tasks()))
        return [_record_to_payload(record) for record in records]

    @app.post("/tasks", response_model=TaskPayload, status_code=status.HTTP_201_CREATED)
    async def create_task(payload: TaskPayload) -> TaskPayload:
        try:
            record = await run_in_threadpool(storage.add_task, _payload_to_record(payload))
        except StorageError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return _record_to_payload(record)

    @app.put("/tasks/{task_id}", response_model=TaskPayload)
    async def update_task(task_id: str, payload: TaskPayload) -> TaskPayload:
        if payload.id != task_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Task id mismatch")
        try:
            record = await run_in_threadpool(storage.update_task, _payload_to_record(payload))
        except TaskNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except StorageError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return _record_to_payload(record)

    @app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_task(task_id: str) -> None:
        await run_in_threadpool(storage.delete_task, task_id)

    @app.post("/tasks/batch", response_model=List[TaskPayload])
    async def batch_update(payloads: List[TaskPayload]) -> List[TaskPayload]:
        records = [_payload_to_record(payload) for payload in payloads]
        updated = await run_in_threadpool(storage.update_many, records)
        return [_record_to_payload(record) for record in updated]

    return app
