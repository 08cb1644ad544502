"""
Export Helpers.

Builds cURL commands and shareable JSON bundles from captured events. Credentials in
header mappings are always replaced with a redaction marker before export.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from . import __version__
from .core import NetworkEvent

REDACTED = "[REDACTED]"
REDACTED_KEYS = {"authorization", "cookie", "x-api-key", "api-key", "set-cookie"}
CURL_SKIP_HEADERS = {"content-length", "accept-encoding"}


def redact_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Returns a copy of headers with credential-bearing values redacted."""
    return {
        key: REDACTED if key.lower() in REDACTED_KEYS else value
        for key, value in (headers or {}).items()
    }


def _quote(value: str) -> str:
    return "'" + value.replace("'", "'\\''") + "'"


def generate_curl(event: NetworkEvent, headers: Optional[Dict[str, str]] = None) -> str:
    """Renders a copy-pasteable cURL command for an event.

    Args:
        event: The captured event.
        headers: Header mapping to use instead of the event's own request headers.
    """
    headers = event.request_headers if headers is None else headers
    parts = [f"curl {_quote(event.url)}", f"-X {event.method}"]
    for key, value in headers.items():
        if key.lower() not in CURL_SKIP_HEADERS:
            parts.append(f"-H {_quote(f'{key}: {value}')}")
    if event.request_body_raw:
        parts.append(f"--data-raw {_quote(event.request_body_raw)}")
    parts.append("--compressed")
    return " \\\n  ".join(parts)


def create_export_bundle(events: Iterable[NetworkEvent]) -> dict:
    """Packs events into the GraphQeLves export bundle format."""
    exported = []
    for event in events:
        request_headers = redact_headers(event.request_headers)
        body = event.response_body_json if event.response_body_json is not None else event.response_body_raw
        exported.append({
            "request": {
                "url": event.url,
                "method": event.method,
                "headers": request_headers,
                "body": event.graphql.to_dict(),
                "curl": generate_curl(event, request_headers),
            },
            "response": {
                "status": event.status or 0,
                "headers": redact_headers(event.response_headers),
                "body": body,
            },
        })

    return {
        "meta": {
            "tool": "GraphQeLves",
            "version": __version__,
            "exportedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        },
        "events": exported,
    }
