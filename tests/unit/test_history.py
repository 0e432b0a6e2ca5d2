import pytest

from apiflow.contracts import HttpRequest, HttpResponse
from apiflow.errors import PersistenceFailure
from apiflow.history import HistoryLog
from apiflow.storage import InMemoryStorage


class BrokenWriteStorage(InMemoryStorage):
    def __init__(self) -> None:
        super().__init__()
        self.writes = 0

    async def set(self, key, value):
        self.writes += 1
        raise PersistenceFailure("quota exceeded")


def _call(path: str, status: int = 200, body=None):
    request = HttpRequest(
        method="get",
        url=f"https://api.test{path}?page=1",
        headers={"Authorization": "Bearer t"},
        params={"page": 1},
    )
    response = HttpResponse(
        status=status,
        headers={"Content-Type": "application/json"},
        body=body if body is not None else {"ok": True},
        elapsed_ms=12.5,
    )
    return request, response


@pytest.mark.asyncio
async def test_add_entry_records_call_details():
    log = HistoryLog()
    entry = await log.add_entry(*_call("/api/v1/users", body={"id": 1}))

    assert entry.id.startswith("h_")
    assert entry.method == "GET"
    assert entry.path == "/api/v1/users"
    assert entry.url == "https://api.test/api/v1/users?page=1"
    assert entry.status == 200
    assert entry.success is True
    assert entry.duration == 12.5
    assert entry.request.headers == {"authorization": "Bearer t"}
    assert entry.request.params == {"page": 1}
    assert entry.response.headers == {"content-type": "application/json"}
    assert entry.response.data == {"id": 1}
    assert entry.response.size == len('{"id":1}')


@pytest.mark.asyncio
async def test_failed_status_is_not_success():
    log = HistoryLog()
    entry = await log.add_entry(*_call("/missing", status=404))
    assert entry.success is False


@pytest.mark.asyncio
async def test_entries_are_newest_first_and_capped():
    log = HistoryLog(max_entries=3)
    for i in range(5):
        await log.add_entry(*_call(f"/items/{i}"))

    assert len(log) == 3
    assert [e.path for e in log.entries()] == ["/items/4", "/items/3", "/items/2"]


@pytest.mark.asyncio
async def test_history_is_persisted_and_reloaded():
    storage = InMemoryStorage()
    log = HistoryLog(storage)
    first = await log.add_entry(*_call("/a"))
    await log.add_entry(*_call("/b"))

    stored = await storage.get("api_tester_history")
    assert [e["path"] for e in stored] == ["/b", "/a"]

    reloaded = HistoryLog(storage, max_entries=1)
    await reloaded.load()
    assert [e.path for e in reloaded.entries()] == ["/b"]
    assert log.get_entry(first.id) is not None


@pytest.mark.asyncio
async def test_delete_and_clear():
    log = HistoryLog()
    entry = await log.add_entry(*_call("/a"))
    await log.add_entry(*_call("/b"))

    assert await log.delete_entry(entry.id) is True
    assert await log.delete_entry(entry.id) is False
    assert log.get_entry(entry.id) is None

    await log.clear()
    assert log.entries() == []


@pytest.mark.asyncio
async def test_save_failure_degrades_to_memory_only():
    storage = BrokenWriteStorage()
    log = HistoryLog(storage)

    await log.add_entry(*_call("/a"))
    await log.add_entry(*_call("/b"))

    assert log.persist is False
    assert storage.writes == 1
    assert len(log) == 2
