"""Elasticsearch bulk client over HTTP.

Sends batches of BulkAction values to the ``_bulk`` endpoint as NDJSON using a
requests Session and reports a per-document BulkItemResult.

Failure classification (what the delivery workers retry):
- Connection errors, timeouts, HTTP 408/429/502/503/504 -> DeliveryTransientError
- Any other non-2xx response, or a response body that cannot be matched to the
  request -> DeliveryPermanentError
- Per-item statuses inside a 200 response are returned as-is; use
  is_retryable_status() to decide what to resend.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from stackindex.errors import DeliveryPermanentError, DeliveryTransientError
from stackindex.obs import span
from stackindex.schemas import BulkAction, BulkItemResult

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "stackindex/0.1",
    "Content-Type": "application/x-ndjson",
    "Accept": "application/json",
}

RETRYABLE_STATUS_CODES = frozenset({408, 429, 502, 503, 504})


def is_retryable_status(status: int) -> bool:
    """True for per-item statuses worth resending (throttling and server errors)."""
    return status == 429 or status >= 500


def render_bulk_body(actions: Sequence[BulkAction]) -> str:
    """Render actions as the NDJSON body of a bulk request (trailing newline included)."""
    lines: List[str] = []
    for action in actions:
        meta = {"index": {"_index": action.index, "_id": action.doc_id}}
        lines.append(json.dumps(meta, ensure_ascii=False))
        lines.append(json.dumps(action.body, ensure_ascii=False, default=str))
    return "\n".join(lines) + "\n"


def _item_error(item: Dict[str, Any]) -> Optional[str]:
    err = item.get("error")
    if err is None:
        return None
    if isinstance(err, dict):
        return f"{err.get('type', 'error')}: {err.get('reason', '')}".strip()
    return str(err)


class ElasticsearchBackend:
    """Bulk writer bound to one Elasticsearch endpoint.

    Args:
        base_url: Endpoint root, e.g. "http://localhost:9200".
        timeout: Per-request timeout in seconds (bounds each delivery attempt).
        session: Optional requests.Session (tests pass a fake one).
        auth: Optional (username, password) for basic auth.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        auth: Optional[tuple] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        if auth:
            self._session.auth = auth

    def bulk(self, actions: Sequence[BulkAction]) -> List[BulkItemResult]:
        """Send one bulk request and return one result per action, in order."""
        if not actions:
            return []
        url = f"{self.base_url}/_bulk"
        payload = render_bulk_body(actions).encode("utf-8")
        with span("stackindex.bulk", {"bulk.documents": len(actions), "bulk.bytes": len(payload)}):
            try:
                resp = self._session.post(url, data=payload, headers=HEADERS, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as exc:
                raise DeliveryTransientError(f"bulk request to {url} failed: {exc}", documents=actions) from exc
            except requests.RequestException as exc:
                raise DeliveryPermanentError(f"bulk request to {url} failed: {exc}", documents=actions) from exc

            logger.debug("HTTP %d from %s (documents=%d, bytes=%d)", resp.status_code, url, len(actions), len(payload))
            if resp.status_code in RETRYABLE_STATUS_CODES:
                raise DeliveryTransientError(
                    f"bulk request returned HTTP {resp.status_code}", documents=actions, status=resp.status_code
                )
            if not 200 <= resp.status_code < 300:
                raise DeliveryPermanentError(
                    f"bulk request returned HTTP {resp.status_code}: {resp.text[:500]}",
                    documents=actions,
                    status=resp.status_code,
                )

            try:
                result = resp.json()
            except ValueError as exc:
                raise DeliveryPermanentError("bulk response is not JSON", documents=actions) from exc

        items = result.get("items") or []
        if len(items) != len(actions):
            raise DeliveryPermanentError(
                f"bulk response has {len(items)} items for {len(actions)} documents", documents=actions
            )

        out: List[BulkItemResult] = []
        for action, item in zip(actions, items):
            # Each item is keyed by its operation name ("index", "create", ...)
            op = next(iter(item.values()), {}) if isinstance(item, dict) else {}
            out.append(
                BulkItemResult(
                    doc_id=str(op.get("_id", action.doc_id)),
                    status=int(op.get("status", 500)),
                    error=_item_error(op),
                )
            )
        return out

    def close(self) -> None:
        self._session.close()
