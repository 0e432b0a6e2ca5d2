import json

import httpx
import pytest

from apiflow import ApiflowConfig, HttpxExecutor, RunStatus, Workbench
from apiflow.storage import InMemoryStorage


class FakeApi:
    """Tiny in-process API that counts created items."""

    def __init__(self) -> None:
        self.items = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/items":
            payload = json.loads(request.content)
            item = {"id": f"i{len(self.items) + 1}", **payload}
            self.items.append(item)
            return httpx.Response(201, json={"data": item})
        if request.method == "GET" and request.url.path.startswith("/items/"):
            item_id = request.url.path.rsplit("/", 1)[-1]
            item = next((i for i in self.items if i["id"] == item_id), None)
            if item is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=item)
        if request.url.path == "/state":
            state = {"items": len(self.items)}
            if self.items:
                state["last"] = self.items[-1]["id"]
            return httpx.Response(200, json={"entity": state})
        return httpx.Response(404, json={"error": "unknown route"})


async def _workbench(api: FakeApi, config: ApiflowConfig, storage=None) -> Workbench:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(api.handler), base_url="https://api.test"
    )
    return await Workbench.from_config(
        config, storage=storage or InMemoryStorage(), executor=HttpxExecutor(client=client)
    )


def _create_and_fetch_steps():
    return [
        {
            "name": "Create item",
            "method": "POST",
            "url": "/items",
            "body": {"name": "{{itemName}}", "qty": 2},
            "extractVariables": [{"name": "itemId", "path": "$.data.id"}],
        },
        {"name": "Fetch item", "method": "GET", "url": "/items/{{itemId}}"},
    ]


@pytest.mark.asyncio
async def test_run_flow_with_state_snapshot_diff():
    api = FakeApi()
    config = ApiflowConfig()
    config.state.source_url = "/state"
    bench = await _workbench(api, config)

    await bench.variables.set("itemName", "widget")
    flow = await bench.flows.create_flow(name="Items", steps=_create_and_fetch_steps())

    report = await bench.run_flow(flow.id, snapshot=True)

    assert report.result.status == RunStatus.COMPLETED
    assert bench.variables.get("itemId") == "i1"
    assert api.items == [{"id": "i1", "name": "widget", "qty": 2}]
    assert report.result.executed[1].response.body["name"] == "widget"
    assert report.diff.added == {"last": "i1"}
    assert report.diff.updated["items"].from_ == 0
    assert report.diff.updated["items"].to == 1
    assert report.diff.removed == {}
    assert bench.state.get_state("items") == 1
    assert len(bench.history) == 2
    await bench.aclose()


@pytest.mark.asyncio
async def test_run_flow_without_snapshot_has_no_diff():
    api = FakeApi()
    bench = await _workbench(api, ApiflowConfig())
    await bench.variables.set("itemName", "gadget")

    report = await bench.run_flow()
    assert report.diff is None
    assert report.result.flow_id == bench.flows.active_flow.id
    # the seeded default flow calls an endpoint this API does not know
    assert report.result.ok
    assert report.result.executed[0].response.status == 404
    await bench.aclose()


@pytest.mark.asyncio
async def test_workbench_reloads_persisted_components():
    api = FakeApi()
    storage = InMemoryStorage()
    config = ApiflowConfig()
    config.history.max_entries = 1

    bench = await _workbench(api, config, storage)
    await bench.variables.set("itemName", "bolt")
    flow = await bench.flows.create_flow(name="Items", steps=_create_and_fetch_steps())
    await bench.run_flow(flow.id)
    await bench.state.set_state("seen", True)
    await bench.aclose()

    again = await _workbench(api, config, storage)
    assert again.variables.get_all() == {"itemName": "bolt", "itemId": "i1"}
    assert [f.name for f in again.flows.flows] == ["Default Flow", "Items"]
    assert [e.path for e in again.history.entries()] == ["/items/i1"]
    assert again.state.get_all_state() == {"seen": True}
    await again.aclose()
