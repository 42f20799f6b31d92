import asyncio

import httpx
import pytest

from verbalist.api import create_app
from verbalist.models import Config, TaskRecord
from verbalist.storage import Storage
from verbalist.store import (
    HttpTaskStore,
    InMemoryTaskStore,
    LocalTaskStore,
    NotFound,
    StoreError,
    open_store,
)


def _http_store(tmp_path, token=None, app_token=None):
    app = create_app(db_path=tmp_path / "server.db", token=app_token)
    return HttpTaskStore("http://testserver", token=token, transport=httpx.ASGITransport(app=app))


def test_in_memory_store_round_trip():
    store = InMemoryTaskStore()

    async def scenario():
        saved = await store.create(TaskRecord(id="A", title=" Walk dog ", sort_order=1))
        with pytest.raises(StoreError):
            await store.create(TaskRecord(id="A", title="Again"))
        with pytest.raises(NotFound):
            await store.update(TaskRecord(id="B", title="Missing"))
        await store.delete("B")
        return saved, await store.list()

    saved, listed = asyncio.run(scenario())

    assert saved.title == "Walk dog"
    assert [task.id for task in listed] == ["A"]


def test_in_memory_store_offline():
    store = InMemoryTaskStore()
    store.offline = True

    with pytest.raises(StoreError):
        asyncio.run(store.list())


def test_local_store_maps_storage_errors(tmp_path):
    store = LocalTaskStore(Storage(db_path=tmp_path / "local.db"))

    async def scenario():
        await store.create(TaskRecord(id="A", title="One", sort_order=1))
        with pytest.raises(NotFound):
            await store.update(TaskRecord(id="B", title="Two"))
        with pytest.raises(StoreError):
            await store.create(TaskRecord(id="C", title="  "))
        updated = await store.batch_update(
            [TaskRecord(id="A", title="One", sort_order=9), TaskRecord(id="B", title="Two")]
        )
        return updated, await store.list()

    updated, listed = asyncio.run(scenario())

    assert [task.id for task in updated] == ["A"]
    assert [(task.id, task.sort_order) for task in listed] == [("A", 9)]


def test_http_store_talks_to_api(tmp_path):
    store = _http_store(tmp_path)

    async def scenario():
        try:
            await store.create(TaskRecord(id="A", title="Call dentist", sort_order=1))
            await store.create(TaskRecord(id="B", title="Buy milk", sort_order=2))
            toggled = await store.update(TaskRecord(id="A", title="Call dentist", completed=True, sort_order=1))
            reordered = await store.batch_update(
                [TaskRecord(id="B", title="Buy milk", sort_order=1), TaskRecord(id="Z", title="Gone")]
            )
            await store.delete("B")
            return toggled, reordered, await store.list()
        finally:
            await store.aclose()

    toggled, reordered, listed = asyncio.run(scenario())

    assert toggled.completed is True
    assert [(task.id, task.sort_order) for task in reordered] == [("B", 1)]
    assert [task.id for task in listed] == ["A"]


def test_http_store_reports_missing_task_as_not_found(tmp_path):
    store = _http_store(tmp_path)

    async def scenario():
        try:
            await store.update(TaskRecord(id="missing", title="Ghost"))
        finally:
            await store.aclose()

    with pytest.raises(NotFound):
        asyncio.run(scenario())


def test_http_store_rejects_bad_token(tmp_path):
    store = _http_store(tmp_path, token="wrong", app_token="secret")

    async def scenario():
        try:
            await store.list()
        finally:
            await store.aclose()

    with pytest.raises(StoreError, match="401"):
        asyncio.run(scenario())


def test_http_store_with_matching_token(tmp_path):
    store = _http_store(tmp_path, token="secret", app_token="secret")

    async def scenario():
        try:
            return await store.list()
        finally:
            await store.aclose()

    assert asyncio.run(scenario()) == []


def test_open_store_picks_backend(tmp_path, monkeypatch):
    from verbalist import storage

    monkeypatch.setattr(storage, "DB_PATH", tmp_path / "tasks.db")

    assert isinstance(open_store(Config()), LocalTaskStore)
    assert isinstance(open_store(Config(server_url="https://tasks.example.com"), offline=True), LocalTaskStore)

    remote = open_store(Config(server_url="https://tasks.example.com", server_token="t"))
    assert isinstance(remote, HttpTaskStore)
    asyncio.run(remote.aclose())
