import json

import pytest

from graphqelves.core import StoreState, store


def build_entry(body=None, mime_type="application/json", url="https://api.example.com/graphql",
                response_text='{"data": {}}', request_id="req-1", **response_fields):
    """Builds a HAR-style transaction the way the browser capture API reports it."""
    request = {
        "id": request_id,
        "url": url,
        "method": "POST",
        "headers": [
            {"name": "Content-Type", "value": mime_type},
            {"name": "Authorization", "value": "Bearer secret"},
        ],
    }
    if body is not None:
        text = body if isinstance(body, str) else json.dumps(body)
        request["postData"] = {"mimeType": mime_type, "text": text}

    response = {
        "status": 200,
        "headers": [{"name": "Content-Type", "value": "application/json"}],
        "bodySize": -1,
        "content": {"text": response_text},
    }
    response.update(response_fields)
    return {
        "request": request,
        "response": response,
        "startedDateTime": "2025-01-15T10:00:00.000Z",
        "time": 120.5,
    }


@pytest.fixture
def make_entry():
    return build_entry


@pytest.fixture(autouse=True)
def reset_store():
    # Run before test
    store.state = StoreState()
    store.max_events = None
    yield
    # Run after test
    store.state = StoreState()
    store.max_events = None
    store.subscribers.clear()
