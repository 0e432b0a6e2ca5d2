import pytest

from apiflow.contracts import HttpResponse
from apiflow.errors import ApiflowError
from apiflow.state import HttpStateProvider, StateSnapshotEngine, compute_diff
from apiflow.storage import InMemoryStorage


class CountingStorage(InMemoryStorage):
    def __init__(self) -> None:
        super().__init__()
        self.writes = 0

    async def set(self, key, value):
        self.writes += 1
        await super().set(key, value)


class RecordingObserver:
    def __init__(self) -> None:
        self.updates = []

    def update_state(self, state, diff):
        self.updates.append((state, diff))


class StaticProvider:
    def __init__(self, data):
        self.data = data

    async def fetch_state(self):
        return self.data


class StubExecutor:
    def __init__(self, response: HttpResponse) -> None:
        self.response = response
        self.calls = []

    async def execute(self, method, url, headers=None, params=None, body=None):
        self.calls.append((method, url))
        return self.response


def test_compute_diff_classifies_keys():
    old = {"users": 2, "orders": [1], "gone": True, "same": {"a": 1, "b": 2}}
    new = {"users": 3, "orders": [1], "fresh": "x", "same": {"b": 2, "a": 1}}

    diff = compute_diff(old, new)

    assert diff.added == {"fresh": "x"}
    assert diff.removed == {"gone": True}
    assert list(diff.updated) == ["users"]
    assert diff.updated["users"].from_ == 2
    assert diff.updated["users"].to == 3
    assert diff.updated["users"].model_dump(by_alias=True) == {"from": 2, "to": 3}


def test_diff_against_itself_is_empty():
    state = {"a": [1, {"b": None}], "c": "d"}
    assert compute_diff(state, dict(state)).is_empty


@pytest.mark.asyncio
async def test_mutations_publish_state_and_diff():
    observer = RecordingObserver()
    engine = StateSnapshotEngine(observer=observer)

    await engine.set_state("users", 1)
    await engine.set_state("users", 2)
    assert await engine.remove_state("users") is True
    assert await engine.remove_state("users") is False

    assert len(observer.updates) == 3
    _, first = observer.updates[0]
    assert first.added == {"users": 1}
    _, second = observer.updates[1]
    assert second.updated["users"].to == 2
    state, third = observer.updates[2]
    assert state == {}
    assert third.removed == {"users": 2}
    assert engine.previous_state == {"users": 2}


@pytest.mark.asyncio
async def test_diff_disabled_publishes_none():
    observer = RecordingObserver()
    engine = StateSnapshotEngine(observer=observer, diff_enabled=False)

    await engine.set_state("a", 1)

    assert observer.updates == [({"a": 1}, None)]
    assert engine.last_diff is None


@pytest.mark.asyncio
async def test_state_is_persisted_and_loaded():
    storage = InMemoryStorage()
    engine = StateSnapshotEngine(storage)
    await engine.set_state("a", {"n": 1})
    await engine.set_state("b", 2, persist=False)

    reloaded = StateSnapshotEngine(storage)
    await reloaded.load()
    assert reloaded.get_all_state() == {"a": {"n": 1}}
    assert reloaded.has_state("a")
    assert reloaded.get_state("b", "default") == "default"

    await engine.clear_state()
    assert await storage.get("domain_state") == {}


@pytest.mark.asyncio
async def test_update_from_response_with_state_key():
    engine = StateSnapshotEngine()
    changed = await engine.update_from_response(
        {"counts": {"users": 4}, "other": 1}, state_key="counts"
    )
    assert changed is True
    assert engine.get_all_state() == {"counts": {"users": 4}}


@pytest.mark.asyncio
async def test_update_from_response_merges_nested_state_once():
    storage = CountingStorage()
    observer = RecordingObserver()
    engine = StateSnapshotEngine(storage, observer=observer)
    await engine.set_state("keep", True)
    storage.writes = 0

    response = HttpResponse(status=200, body={"state": {"users": 2, "orders": 5}})
    assert await engine.update_from_response(response) is True

    assert engine.get_all_state() == {"keep": True, "users": 2, "orders": 5}
    assert storage.writes == 1
    assert engine.last_diff.added == {"users": 2, "orders": 5}
    assert len(observer.updates) == 2


@pytest.mark.asyncio
async def test_update_from_response_without_state_is_noop():
    engine = StateSnapshotEngine()
    assert await engine.update_from_response({"data": 1}) is False
    assert await engine.update_from_response("text body") is False
    assert engine.get_all_state() == {}


@pytest.mark.asyncio
async def test_fetch_from_source_replaces_state():
    engine = StateSnapshotEngine(provider=StaticProvider({"users": 9}))
    await engine.set_state("stale", 1)

    fetched = await engine.fetch_from_source()

    assert fetched == {"users": 9}
    assert engine.last_diff.removed == {"stale": 1}
    assert engine.last_diff.added == {"users": 9}


@pytest.mark.asyncio
async def test_fetch_without_provider_raises():
    with pytest.raises(ApiflowError):
        await StateSnapshotEngine().fetch_from_source()


@pytest.mark.asyncio
async def test_http_state_provider_unwraps_entity():
    executor = StubExecutor(HttpResponse(status=200, body={"entity": {"users": 1}}))
    provider = HttpStateProvider(executor, "/api/state")

    assert await provider.fetch_state() == {"users": 1}
    assert executor.calls == [("GET", "/api/state")]

    executor.response = HttpResponse(status=200, body={"users": 2})
    assert await provider.fetch_state() == {"users": 2}

    executor.response = HttpResponse(status=500, body="boom")
    with pytest.raises(ApiflowError):
        await provider.fetch_state()
