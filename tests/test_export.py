from graphqelves.core import assemble_events
from graphqelves.export import REDACTED, create_export_bundle, generate_curl, redact_headers
from conftest import build_entry


def test_redact_headers_any_case():
    headers = {
        "Authorization": "Bearer abc",
        "COOKIE": "session=1",
        "x-api-key": "k",
        "Api-Key": "k2",
        "Set-Cookie": "a=b",
        "Content-Type": "application/json",
    }
    redacted = redact_headers(headers)
    assert redacted == {
        "Authorization": REDACTED,
        "COOKIE": REDACTED,
        "x-api-key": REDACTED,
        "Api-Key": REDACTED,
        "Set-Cookie": REDACTED,
        "Content-Type": "application/json",
    }
    assert headers["Authorization"] == "Bearer abc"
    assert redact_headers(None) == {}


def test_generate_curl():
    entry = build_entry({"query": "query It's { x }"})
    entry["request"]["headers"].append({"name": "Content-Length", "value": "30"})
    entry["request"]["headers"].append({"name": "Accept-Encoding", "value": "gzip"})
    event = assemble_events(entry, None)[0]

    curl = generate_curl(event)
    lines = curl.split(" \\\n  ")
    assert lines[0] == "curl 'https://api.example.com/graphql'"
    assert lines[1] == "-X POST"
    assert "-H 'Content-Type: application/json'" in lines
    assert "-H 'Authorization: Bearer secret'" in lines
    assert not any("Content-Length" in line or "Accept-Encoding" in line for line in lines)
    assert lines[-2] == "--data-raw '{\"query\": \"query It'\\''s { x }\"}'"
    assert lines[-1] == "--compressed"


def test_export_bundle_redacts_both_sides():
    entry = build_entry({"query": "mutation Login { x }"}, response_text='{"data": {"ok": true}}')
    entry["response"]["headers"].append({"name": "set-cookie", "value": "sid=42"})
    event = assemble_events(entry, '{"data": {"ok": true}}')[0]

    bundle = create_export_bundle([event])
    assert bundle["meta"]["tool"] == "GraphQeLves"
    assert bundle["meta"]["version"] == "1.0"
    assert bundle["meta"]["exportedAt"].endswith("Z")

    exported = bundle["events"][0]
    assert exported["request"]["headers"]["Authorization"] == REDACTED
    assert exported["response"]["headers"]["set-cookie"] == REDACTED
    assert "Bearer secret" not in exported["request"]["curl"]
    assert exported["request"]["body"]["operationName"] == "Login"
    assert exported["request"]["body"]["operationType"] == "mutation"
    assert exported["response"]["status"] == 200
    assert exported["response"]["body"] == {"data": {"ok": True}}


def test_export_falls_back_to_raw_body_and_zero_status():
    entry = build_entry({"query": "{ x }"}, status=0)
    event = assemble_events(entry, "<html>gateway timeout</html>")[0]
    exported = create_export_bundle([event])["events"][0]
    assert exported["response"]["status"] == 0
    assert exported["response"]["body"] == "<html>gateway timeout</html>"
