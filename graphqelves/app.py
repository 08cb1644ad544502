import argparse
import json
import logging
import os
from collections import Counter
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastmcp import FastMCP
from pydantic import BaseModel

from . import __version__
from .core import FILTERS, StoreState, filtered_events, monitor, store
from .export import create_export_bundle
from .har import har_entries, replay_har

logger = logging.getLogger("graphqelves.app")

# --- Configuration ---
HAR_FILES_ENV = "GRAPHQELVES_HAR_FILES"
MAX_EVENTS_ENV = "GRAPHQELVES_MAX_EVENTS"


class CaptureRequest(BaseModel):
    request: Dict[str, Any]
    response: Dict[str, Any] = {}
    startedDateTime: Optional[Union[str, float]] = None
    time: Optional[float] = None


class HarDocument(BaseModel):
    log: Dict[str, Any]


class ViewRequest(BaseModel):
    filter: str = "all"
    search: str = ""


class SelectionRequest(BaseModel):
    action: str  # single, add, range, toggle, click
    id: Optional[str] = None
    ids: List[str] = []
    shift: bool = False
    multi: bool = False


def _summary(event) -> dict:
    return {
        "id": event.id,
        "requestId": event.request_id,
        "operationName": event.graphql.operation_name or "Anonymous",
        "operationType": event.graphql.operation_type,
        "url": event.url,
        "status": event.status,
        "duration": event.duration,
        "responseSize": event.response_size,
    }


def recent_operations(limit: int, operation_type: str = "all", search: str = "") -> List[dict]:
    """Summaries of the last `limit` events matching a type and search, without touching the panel view."""
    if limit <= 0:
        return []
    view = StoreState(events=store.state.events, filter=operation_type, search_query=search)
    return [_summary(e) for e in filtered_events(view)[-limit:]]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("GraphQeLves initializing...")

    max_events = os.environ.get(MAX_EVENTS_ENV)
    if max_events:
        try:
            store.max_events = int(max_events)
        except ValueError:
            logger.warning(f"Ignoring non-integer {MAX_EVENTS_ENV}={max_events!r}")

    har_files = os.environ.get(HAR_FILES_ENV)
    if har_files:
        for path in json.loads(har_files):
            try:
                await replay_har(path, monitor)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load HAR file {path}: {e}")
    yield
    logger.info("GraphQeLves shutting down...")


# --- MCP Server Definition ---
mcp = FastMCP("GraphQeLves GraphQL Inspector")


@mcp.tool()
def get_help() -> str:
    """
    Returns a guide on how to use GraphQeLves to inspect captured GraphQL traffic.
    Read this if you are unsure how to proceed.
    """
    return """
# GraphQeLves User Guide for AI Agents

You are connected to **GraphQeLves**, which reconstructs GraphQL operations from HTTP
traffic captured by browser developer tools.

## Recommended Workflow

1.  **Get traffic in**:
    The inspection panel posts captured transactions to `/api/capture`, and HAR files
    can be loaded with `/api/har` or `graphqelves-server --har capture.har`.

2.  **Find operations**:
    *   Use `list_operations(limit=20)` to see the most recent operations.
    *   Narrow down with `operation_type` (`query`, `mutation`, `subscription`, `persisted`)
        or `search`, which matches the operation name or URL.
    *   `Anonymous` means the operation had no explicit or declared name.
    *   `persisted` operations carry only a hash in `extensions.persistedQuery`.

3.  **Inspect one operation**:
    Use `get_operation(event_id)` for the full request, variables and response.
    Batched requests produce one event per operation; they share a `requestId` and
    carry a `batchIndex`.

4.  **Share**:
    `export_selected()` returns a JSON bundle for the events selected in the panel.
    Authorization, cookie and API key headers are always redacted.
    """


@mcp.tool()
def list_operations(limit: int = 20, operation_type: str = "all", search: str = "") -> str:
    """
    List the most recent captured GraphQL operations.

    Args:
        limit: Maximum number of operations to return.
        operation_type: 'all', 'query', 'mutation', 'subscription' or 'persisted'.
        search: Case-insensitive text matched against the operation name and URL.
    """
    if operation_type not in FILTERS:
        return f"Unknown operation type: {operation_type}"
    return json.dumps(recent_operations(limit, operation_type, search), indent=2)


@mcp.tool()
def get_operation(event_id: str) -> str:
    """Get the full captured request and response for one operation."""
    event = store.get(event_id)
    if event is None:
        return f"No operation found with id {event_id}"
    return json.dumps(event.to_dict(), indent=2)


@mcp.tool()
def export_selected() -> str:
    """Export the operations currently selected in the panel as a redacted JSON bundle."""
    return json.dumps(create_export_bundle(store.selected_events()), indent=2)


@mcp.tool()
def clear_events() -> str:
    """Remove every captured operation and clear the selection."""
    count = len(store.events)
    store.clear()
    return f"Cleared {count} operations"


@mcp.resource("graphql://events/summary")
def events_summary() -> str:
    """Returns counts of captured operations by type."""
    counts = Counter(e.graphql.operation_type for e in store.events)
    return json.dumps({
        "total": len(store.events),
        "selected": len(store.selected_ids),
        "byType": dict(counts),
    }, indent=2)


# --- FastAPI App ---
app = FastAPI(title="GraphQeLves", version=__version__, lifespan=lifespan)

# Mount MCP
mcp_app = mcp.http_app(transport="sse")
app.mount("/mcp", mcp_app)


@app.post("/api/capture")
async def capture(entry: CaptureRequest):
    events = await monitor.handle_request(entry.model_dump())
    return {"status": "success", "events": len(events)}


@app.post("/api/har")
async def import_har(document: HarDocument):
    try:
        entries = har_entries(document.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    count = await monitor.ingest(entries)
    return {"status": "success", "entries": len(entries), "events": count}


@app.get("/api/events")
async def get_events(limit: Optional[int] = None):
    """Get the filtered view in append order, optionally only the last `limit` events."""
    events = store.filtered()
    if limit is not None:
        events = events[-limit:] if limit > 0 else []
    return [e.to_dict() for e in events]


@app.get("/api/events/{event_id}")
async def get_event(event_id: str):
    event = store.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"No event with id {event_id}")
    return event.to_dict()


@app.delete("/api/events")
async def delete_events():
    store.clear()
    return {"status": "success"}


@app.get("/api/view")
async def get_view():
    return {"filter": store.filter, "search": store.search_query}


@app.put("/api/view")
async def update_view(view: ViewRequest):
    try:
        store.set_filter(view.filter)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    store.set_search_query(view.search)
    return {"filter": store.filter, "search": store.search_query}


@app.get("/api/selection")
async def get_selection():
    return {"selected": [e.id for e in store.selected_events()]}


@app.post("/api/selection")
async def update_selection(req: SelectionRequest):
    if req.action == "range":
        store.select_range(req.ids)
    elif req.id is None:
        raise HTTPException(status_code=400, detail=f"Action '{req.action}' requires an id")
    elif req.action == "single":
        store.select_single(req.id)
    elif req.action == "add":
        store.select_toggle_add(req.id)
    elif req.action == "toggle":
        store.toggle(req.id)
    elif req.action == "click":
        store.click(req.id, shift=req.shift, multi=req.multi)
    else:
        raise HTTPException(status_code=400, detail=f"Unknown selection action '{req.action}'")
    return {"selected": [e.id for e in store.selected_events()]}


@app.get("/api/export")
async def export_events():
    selected = store.selected_events()
    if not selected:
        raise HTTPException(status_code=400, detail="No events selected")
    return create_export_bundle(selected)


@app.websocket("/ws/monitor")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    queue = await store.subscribe()
    try:
        while True:
            event = await queue.get()
            await websocket.send_json(event)
    except WebSocketDisconnect:
        store.unsubscribe(queue)


def main():
    parser = argparse.ArgumentParser(prog="graphqelves-server", description="GraphQL traffic inspector")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8003)
    parser.add_argument("--har", action="append", default=[], metavar="FILE",
                        help="HAR file to load on startup (repeatable)")
    parser.add_argument("--max-events", type=int, default=None,
                        help="Keep at most this many events, evicting the oldest")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.har:
        os.environ[HAR_FILES_ENV] = json.dumps(args.har)
    if args.max_events:
        os.environ[MAX_EVENTS_ENV] = str(args.max_events)

    import uvicorn
    uvicorn.run("graphqelves.app:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
