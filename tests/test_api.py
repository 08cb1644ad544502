import pytest
from httpx import AsyncClient, ASGITransport

from graphqelves.app import app, recent_operations
from graphqelves.core import assemble_events, store
from graphqelves.export import REDACTED
from conftest import build_entry


@pytest.mark.asyncio
async def test_capture_select_export_flow():
    """
    Verifies the panel workflow: capture, browse, filter, select, export and clear.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:

        # 1. Capture a batch and a single operation
        resp = await ac.post("/api/capture", json=build_entry(
            [{"query": "query A { a }"}, {"query": "mutation B { b }"}], request_id="batch"))
        assert resp.status_code == 200
        assert resp.json()["events"] == 2

        resp = await ac.post("/api/capture", json=build_entry({"query": "query C { c }"}, request_id="single"))
        assert resp.json()["events"] == 1

        # Not GraphQL: accepted but produces nothing
        resp = await ac.post("/api/capture", json=build_entry([{"event": "page_view"}]))
        assert resp.json()["events"] == 0

        resp = await ac.get("/api/events")
        events = resp.json()
        assert [e["graphql"]["operationName"] for e in events] == ["A", "B", "C"]
        assert [e.get("batchIndex") for e in events] == [0, 1, None]
        ids = [e["id"] for e in events]

        resp = await ac.get("/api/events", params={"limit": 1})
        assert [e["id"] for e in resp.json()] == [ids[2]]

        resp = await ac.get(f"/api/events/{ids[1]}")
        assert resp.json()["graphql"]["operationType"] == "mutation"

        # 2. Filter view
        resp = await ac.put("/api/view", json={"filter": "mutation", "search": ""})
        assert resp.json() == {"filter": "mutation", "search": ""}
        resp = await ac.get("/api/events")
        assert [e["id"] for e in resp.json()] == [ids[1]]

        resp = await ac.put("/api/view", json={"filter": "fragment"})
        assert resp.status_code == 400
        await ac.put("/api/view", json={"filter": "all", "search": ""})

        # 3. Select with a click then a shift-click
        await ac.post("/api/selection", json={"action": "click", "id": ids[0]})
        resp = await ac.post("/api/selection", json={"action": "click", "id": ids[2], "shift": True})
        assert resp.json()["selected"] == ids

        resp = await ac.post("/api/selection", json={"action": "toggle", "id": ids[1]})
        assert resp.json()["selected"] == [ids[0], ids[2]]

        resp = await ac.post("/api/selection", json={"action": "single"})
        assert resp.status_code == 400
        resp = await ac.post("/api/selection", json={"action": "explode", "id": ids[0]})
        assert resp.status_code == 400

        # 4. Export the selection
        resp = await ac.get("/api/export")
        bundle = resp.json()
        assert len(bundle["events"]) == 2
        assert bundle["events"][0]["request"]["headers"]["Authorization"] == REDACTED

        # 5. Clear
        resp = await ac.delete("/api/events")
        assert resp.status_code == 200
        assert (await ac.get("/api/events")).json() == []
        assert (await ac.get("/api/selection")).json() == {"selected": []}
        assert (await ac.get("/api/export")).status_code == 400
        assert (await ac.get(f"/api/events/{ids[0]}")).status_code == 404


@pytest.mark.asyncio
async def test_har_import():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.post("/api/har", json={"log": {"entries": [build_entry({"query": "query H { h }"})]}})
        assert resp.status_code == 200
        assert resp.json() == {"status": "success", "entries": 1, "events": 1}

        resp = await ac.post("/api/har", json={"log": {"version": "1.2"}})
        assert resp.status_code == 400


@pytest.mark.asyncio
async def test_capture_accepts_epoch_timestamp_and_skips_malformed_har_entries():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        entry = build_entry({"query": "query Epoch { x }"})
        entry["startedDateTime"] = 1736935200000
        resp = await ac.post("/api/capture", json=entry)
        assert resp.status_code == 200
        assert resp.json()["events"] == 1
        assert (await ac.get("/api/events")).json()[0]["timestamp"] == 1736935200000.0

        resp = await ac.post("/api/har", json={"log": {"entries": [
            {"request": "garbage"},
            build_entry({"query": "query Later { x }"}),
        ]}})
        assert resp.status_code == 200
        assert resp.json()["events"] == 1


def test_recent_operations_limit():
    for name in ("One", "Two", "Three"):
        for event in assemble_events(build_entry({"query": f"query {name} {{ x }}"}), None):
            store.append(event)

    assert recent_operations(0) == []
    assert recent_operations(-5) == []
    assert [op["operationName"] for op in recent_operations(2)] == ["Two", "Three"]
    assert [op["operationName"] for op in recent_operations(10, search="thr")] == ["Three"]
