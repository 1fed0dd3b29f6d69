"""Tests for the Elasticsearch bulk backend, using a fake requests session."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, List, Optional

import pytest
import requests

from stackindex.backend import ElasticsearchBackend, is_retryable_status, render_bulk_body
from stackindex.errors import DeliveryPermanentError, DeliveryTransientError
from stackindex.schemas import BulkAction


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response: Optional[FakeResponse] = None, exc: Optional[Exception] = None):
        self.response = response
        self.exc = exc
        self.posts: List[dict] = []
        self.auth = None
        self.closed = False

    def post(self, url, data=None, headers=None, timeout=None):
        self.posts.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response

    def close(self):
        self.closed = True


def _actions(n: int) -> List[BulkAction]:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [
        BulkAction(index="stacktrace", doc_type="goroutine", doc_id=str(i), timestamp=ts, body={"ordinal": i})
        for i in range(n)
    ]


def _ok_items(n: int, status: int = 201) -> dict:
    return {"errors": False, "items": [{"index": {"_id": str(i), "status": status}} for i in range(n)]}


def test_render_bulk_body():
    body = render_bulk_body(_actions(2))

    lines = body.split("\n")
    assert body.endswith("\n")
    assert len(lines) == 5  # 2 meta + 2 source + trailing empty
    assert json.loads(lines[0]) == {"index": {"_index": "stacktrace", "_id": "0"}}
    assert json.loads(lines[1]) == {"ordinal": 0}


def test_bulk_success():
    session = FakeSession(FakeResponse(200, _ok_items(3)))
    backend = ElasticsearchBackend("http://es:9200/", timeout=7, session=session)

    results = backend.bulk(_actions(3))

    assert [r.doc_id for r in results] == ["0", "1", "2"]
    assert all(r.ok for r in results)
    post = session.posts[0]
    assert post["url"] == "http://es:9200/_bulk"
    assert post["headers"]["Content-Type"] == "application/x-ndjson"
    assert post["timeout"] == 7


def test_item_errors_reported():
    payload = {
        "errors": True,
        "items": [
            {"index": {"_id": "0", "status": 201}},
            {"index": {"_id": "1", "status": 400, "error": {"type": "mapper_parsing_exception", "reason": "bad"}}},
            {"create": {"_id": "2", "status": 429, "error": "es_rejected_execution_exception"}},
        ],
    }
    backend = ElasticsearchBackend("http://es:9200", session=FakeSession(FakeResponse(200, payload)))

    results = backend.bulk(_actions(3))

    assert [r.status for r in results] == [201, 400, 429]
    assert results[1].error == "mapper_parsing_exception: bad"
    assert results[2].error == "es_rejected_execution_exception"
    assert not is_retryable_status(400)
    assert is_retryable_status(429)
    assert is_retryable_status(503)


@pytest.mark.parametrize("status", [429, 502, 503, 504])
def test_retryable_http_status(status):
    backend = ElasticsearchBackend("http://es:9200", session=FakeSession(FakeResponse(status, text="busy")))
    with pytest.raises(DeliveryTransientError) as info:
        backend.bulk(_actions(2))
    assert info.value.status == status
    assert len(info.value.documents) == 2


@pytest.mark.parametrize("status", [400, 401, 404])
def test_permanent_http_status(status):
    backend = ElasticsearchBackend("http://es:9200", session=FakeSession(FakeResponse(status, text="nope")))
    with pytest.raises(DeliveryPermanentError):
        backend.bulk(_actions(1))


@pytest.mark.parametrize("exc", [requests.ConnectionError("refused"), requests.Timeout("slow")])
def test_transport_errors_are_transient(exc):
    backend = ElasticsearchBackend("http://es:9200", session=FakeSession(exc=exc))
    with pytest.raises(DeliveryTransientError):
        backend.bulk(_actions(1))


def test_invalid_url_is_permanent():
    backend = ElasticsearchBackend("http://es:9200", session=FakeSession(exc=requests.exceptions.InvalidURL("bad")))
    with pytest.raises(DeliveryPermanentError):
        backend.bulk(_actions(1))


def test_mismatched_items_is_permanent():
    backend = ElasticsearchBackend("http://es:9200", session=FakeSession(FakeResponse(200, _ok_items(1))))
    with pytest.raises(DeliveryPermanentError):
        backend.bulk(_actions(2))


def test_non_json_response_is_permanent():
    backend = ElasticsearchBackend("http://es:9200", session=FakeSession(FakeResponse(200, None, "<html>")))
    with pytest.raises(DeliveryPermanentError):
        backend.bulk(_actions(1))


def test_empty_batch_sends_nothing():
    session = FakeSession(FakeResponse(200, _ok_items(0)))
    assert ElasticsearchBackend("http://es:9200", session=session).bulk([]) == []
    assert session.posts == []


def test_auth_and_close():
    session = FakeSession()
    backend = ElasticsearchBackend("http://es:9200", session=session, auth=("elastic", "secret"))
    assert session.auth == ("elastic", "secret")
    backend.close()
    assert session.closed
