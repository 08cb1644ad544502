import asyncio
import base64
import binascii
import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from .protocols import GraphQLParser, safe_json_parse

logger = logging.getLogger("graphqelves.core")

FILTERS = ("all", "query", "mutation", "subscription", "persisted")

ContentFetcher = Callable[[], Awaitable[Tuple[Optional[str], Optional[str]]]]


@dataclass(frozen=True)
class GraphQLPayload:
    operation_name: Optional[str]
    operation_type: str  # query, mutation, subscription, persisted, unknown
    query: Optional[str]
    variables: Optional[Dict[str, Any]]
    extensions: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        data = {
            "operationName": self.operation_name,
            "operationType": self.operation_type,
            "query": self.query,
            "variables": self.variables,
        }
        if self.extensions is not None:
            data["extensions"] = self.extensions
        return data


@dataclass(frozen=True)
class NetworkEvent:
    id: str
    request_id: str
    timestamp: float  # epoch milliseconds
    url: str
    method: str
    status: Optional[int]
    request_headers: Dict[str, str]
    request_body_raw: Optional[str]
    graphql: GraphQLPayload
    response_headers: Dict[str, str]
    response_body_raw: Optional[str]
    response_body_json: Any
    response_size: int
    duration: float
    is_batched: bool = False
    batch_index: Optional[int] = None
    type: str = "graphql"

    def to_dict(self) -> dict:
        data = {
            "type": self.type,
            "id": self.id,
            "requestId": self.request_id,
            "timestamp": self.timestamp,
            "url": self.url,
            "method": self.method,
            "status": self.status,
            "requestHeaders": self.request_headers,
            "requestBodyRaw": self.request_body_raw,
            "graphql": self.graphql.to_dict(),
            "responseHeaders": self.response_headers,
            "responseBodyRaw": self.response_body_raw,
            "responseBodyJson": self.response_body_json,
            "responseSize": self.response_size,
            "duration": self.duration,
            "isBatched": self.is_batched,
        }
        if self.is_batched:
            data["batchIndex"] = self.batch_index
        return data


# --- Event assembly ---

def headers_to_dict(headers: Optional[Iterable[dict]]) -> Dict[str, str]:
    """Folds HAR name/value pairs into a mapping; later duplicates overwrite earlier ones."""
    result: Dict[str, str] = {}
    for header in headers or []:
        name = header.get("name")
        if name is None:
            continue
        value = header.get("value")
        result[str(name)] = "" if value is None else str(value)
    return result


def is_candidate(entry: dict) -> bool:
    """Coarse relevance gate: a JSON request body or a URL path ending in /graphql."""
    request = entry.get("request") or {}
    post_data = request.get("postData") or {}
    mime_type = (post_data.get("mimeType") or "").lower()
    if "application/json" in mime_type:
        return True
    return urlsplit(request.get("url") or "").path.endswith("/graphql")


def extract_payloads(entry: dict) -> Optional[List[GraphQLPayload]]:
    """Runs the relevance gate and the payload extractor over one transaction."""
    if not is_candidate(entry):
        return None
    post_data = (entry.get("request") or {}).get("postData") or {}
    extracted = GraphQLParser.extract(post_data.get("mimeType"), post_data.get("text"))
    if not extracted:
        return None
    return [GraphQLPayload(**fields) for fields in extracted]


def _positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def resolve_response_size(response: dict, content: Optional[str]) -> int:
    """Best-effort response size in bytes: bodySize, then Content-Length, then the body itself."""
    body_size = response.get("bodySize")
    if _positive_number(body_size):
        return int(body_size)

    for header in response.get("headers") or []:
        if str(header.get("name", "")).lower() != "content-length":
            continue
        try:
            parsed = int(str(header.get("value", "")).strip())
        except ValueError:
            parsed = 0
        if parsed > 0:
            return parsed
        break

    if content:
        return len(content.encode("utf-8"))
    return 0


def parse_timestamp(value: Any) -> float:
    """Converts a HAR startedDateTime into epoch milliseconds."""
    if _positive_number(value):
        return float(value)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.timestamp() * 1000
        except ValueError:
            logger.debug(f"Unparsable startedDateTime {value!r}, using ingestion time")
    return time.time() * 1000


def decode_content(text: Optional[str], encoding: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    if encoding == "base64":
        try:
            return base64.b64decode(text).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Could not decode base64 response body: {e}")
            return None
    return text


def assemble_events(
    entry: dict,
    content: Optional[str] = None,
    payloads: Optional[List[GraphQLPayload]] = None,
) -> List[NetworkEvent]:
    """Builds one NetworkEvent per GraphQL operation found in a captured transaction.

    Args:
        entry: HAR-style transaction with request, response, startedDateTime and time.
        content: The decoded response body text, if it was fetched.
        payloads: Payloads already extracted from the request; extracted here if omitted.

    Returns:
        The events in batch order, all sharing one requestId. Empty if the transaction
        carries no GraphQL.
    """
    if payloads is None:
        payloads = extract_payloads(entry)
    if not payloads:
        return []

    request = entry.get("request") or {}
    response = entry.get("response") or {}
    post_data = request.get("postData") or {}

    status = response.get("status")
    duration = entry.get("time")
    request_id = request.get("id") or str(uuid.uuid4())
    batched = len(payloads) > 1

    shared = dict(
        request_id=str(request_id),
        timestamp=parse_timestamp(entry.get("startedDateTime")),
        url=request.get("url") or "",
        method=request.get("method") or "GET",
        status=status if _positive_number(status) else None,
        request_headers=headers_to_dict(request.get("headers")),
        request_body_raw=post_data.get("text") or None,
        response_headers=headers_to_dict(response.get("headers")),
        response_body_raw=content,
        response_body_json=safe_json_parse(content),
        response_size=resolve_response_size(response, content),
        duration=float(duration) if _positive_number(duration) else 0.0,
        is_batched=batched,
    )

    return [
        NetworkEvent(
            id=str(uuid.uuid4()),
            graphql=payload,
            batch_index=index if batched else None,
            **shared,
        )
        for index, payload in enumerate(payloads)
    ]


# --- Store transitions ---

@dataclass(frozen=True)
class StoreState:
    events: Tuple[NetworkEvent, ...] = ()
    selected: FrozenSet[str] = frozenset()
    filter: str = "all"
    search_query: str = ""
    anchor: Optional[str] = None  # last clicked id, start of a shift-click range


def _known(state: StoreState, ids: Iterable[str]) -> FrozenSet[str]:
    present = {event.id for event in state.events}
    return frozenset(i for i in ids if i in present)


def append_event(state: StoreState, event: NetworkEvent, max_events: Optional[int] = None) -> StoreState:
    events = state.events + (event,)
    if max_events and len(events) > max_events:
        events = events[len(events) - max_events:]
        kept = {e.id for e in events}
        return replace(
            state,
            events=events,
            selected=frozenset(i for i in state.selected if i in kept),
            anchor=state.anchor if state.anchor in kept else None,
        )
    return replace(state, events=events)


def clear_events(state: StoreState) -> StoreState:
    return replace(state, events=(), selected=frozenset(), anchor=None)


def select_single(state: StoreState, event_id: str) -> StoreState:
    return replace(state, selected=_known(state, [event_id]))


def select_toggle_add(state: StoreState, event_id: str) -> StoreState:
    return replace(state, selected=state.selected | _known(state, [event_id]))


def select_range(state: StoreState, ids: Iterable[str]) -> StoreState:
    return replace(state, selected=state.selected | _known(state, ids))


def toggle_selection(state: StoreState, event_id: str) -> StoreState:
    if event_id in state.selected:
        return replace(state, selected=state.selected - {event_id})
    return select_toggle_add(state, event_id)


def set_filter(state: StoreState, kind: str) -> StoreState:
    if kind not in FILTERS:
        raise ValueError(f"Unknown filter {kind!r}, expected one of {', '.join(FILTERS)}")
    return replace(state, filter=kind)


def set_search_query(state: StoreState, text: Optional[str]) -> StoreState:
    return replace(state, search_query=text or "")


def filtered_events(state: StoreState) -> List[NetworkEvent]:
    """The visible view: events matching the filter and search, in append order."""
    needle = state.search_query.lower()

    def visible(event: NetworkEvent) -> bool:
        if state.filter != "all" and event.graphql.operation_type != state.filter:
            return False
        if needle:
            name = (event.graphql.operation_name or "").lower()
            return needle in name or needle in event.url.lower()
        return True

    return [event for event in state.events if visible(event)]


def range_between(visible_ids: List[str], anchor: Optional[str], target: str) -> Optional[List[str]]:
    """Inclusive run of ids from anchor to target in the visible order, or None."""
    if anchor not in visible_ids or target not in visible_ids:
        return None
    start, end = sorted((visible_ids.index(anchor), visible_ids.index(target)))
    return visible_ids[start:end + 1]


def click(state: StoreState, event_id: str, shift: bool = False, multi: bool = False) -> StoreState:
    """Row-click selection: shift extends a range, multi adds, otherwise select just one."""
    if shift and state.anchor:
        ids = range_between([e.id for e in filtered_events(state)], state.anchor, event_id)
        if ids is not None:
            state = select_range(state, ids)
        else:
            state = select_toggle_add(state, event_id)
    elif multi:
        state = select_toggle_add(state, event_id)
    else:
        state = select_single(state, event_id)
    return replace(state, anchor=event_id)


class EventStore:
    """Owns the store state and broadcasts changes to subscribers."""

    def __init__(self, max_events: Optional[int] = None):
        self.state = StoreState()
        self.max_events = max_events
        self.subscribers: List[asyncio.Queue] = []

    @property
    def events(self) -> List[NetworkEvent]:
        return list(self.state.events)

    @property
    def selected_ids(self) -> FrozenSet[str]:
        return self.state.selected

    @property
    def filter(self) -> str:
        return self.state.filter

    @property
    def search_query(self) -> str:
        return self.state.search_query

    def get(self, event_id: str) -> Optional[NetworkEvent]:
        return next((e for e in self.state.events if e.id == event_id), None)

    def filtered(self) -> List[NetworkEvent]:
        return filtered_events(self.state)

    def selected_events(self) -> List[NetworkEvent]:
        return [e for e in self.state.events if e.id in self.state.selected]

    def append(self, event: NetworkEvent):
        self.state = append_event(self.state, event, self.max_events)
        self.broadcast(event.to_dict())

    def clear(self):
        self.state = clear_events(self.state)
        self.broadcast({"type": "clear"})

    def select_single(self, event_id: str):
        self.state = select_single(self.state, event_id)

    def select_toggle_add(self, event_id: str):
        self.state = select_toggle_add(self.state, event_id)

    def select_range(self, ids: Iterable[str]):
        self.state = select_range(self.state, ids)

    def toggle(self, event_id: str):
        self.state = toggle_selection(self.state, event_id)

    def click(self, event_id: str, shift: bool = False, multi: bool = False):
        self.state = click(self.state, event_id, shift, multi)

    def set_filter(self, kind: str):
        self.state = set_filter(self.state, kind)

    def set_search_query(self, text: Optional[str]):
        self.state = set_search_query(self.state, text)

    def broadcast(self, data: dict):
        for q in self.subscribers:
            try:
                q.put_nowait(data)
            except asyncio.QueueFull:
                pass  # Slow subscribers miss updates

    async def subscribe(self) -> asyncio.Queue:
        q = asyncio.Queue(maxsize=100)
        self.subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue):
        if q in self.subscribers:
            self.subscribers.remove(q)


store = EventStore()


# --- Capture ---

def entry_content(entry: dict) -> Tuple[Optional[str], Optional[str]]:
    """Reads an inline HAR response body as (text, encoding)."""
    content = (entry.get("response") or {}).get("content") or {}
    return content.get("text"), content.get("encoding")


class CaptureMonitor:
    """Turns captured transactions into events, in two phases.

    The request body is inspected first; only transactions that carry GraphQL have
    their response body fetched, after which the events are assembled and appended.
    """

    def __init__(self, event_store: EventStore):
        self.store = event_store

    async def handle_request(self, entry: dict, fetch_content: Optional[ContentFetcher] = None) -> List[NetworkEvent]:
        request = entry.get("request")
        url = request.get("url") if isinstance(request, dict) else None
        try:
            payloads = extract_payloads(entry)
            if not payloads:
                logger.debug(f"No GraphQL in {url}")
                return []

            if fetch_content is not None:
                text, encoding = await fetch_content()
            else:
                text, encoding = entry_content(entry)

            events = assemble_events(entry, decode_content(text, encoding), payloads)
        except Exception as e:
            logger.error(f"Failed to process transaction for {url}: {e}")
            return []

        for event in events:
            self.store.append(event)
        return events

    async def ingest(self, entries: Iterable[dict]) -> int:
        """Handles HAR entries one after another, returning the number of events produced."""
        count = 0
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("request"), dict):
                logger.warning("Skipping HAR entry without a request object")
                continue
            count += len(await self.handle_request(entry))
        logger.info(f"Ingested {count} GraphQL events")
        return count


monitor = CaptureMonitor(store)
