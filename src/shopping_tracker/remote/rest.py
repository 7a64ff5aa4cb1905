from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import requests

from ..errors import StoreError
from ..logging import get_logger
from .base import Filters, Row, as_rows, is_multi


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote_in(value: Any) -> str:
    text = _format_value(value)
    if any(ch in text for ch in ',()"'):
        return '"' + text.replace('"', '\\"') + '"'
    return text


def build_filter_params(filters: Optional[Filters]) -> List[Tuple[str, str]]:
    """Translate equality/IN filters into PostgREST query parameters."""
    params: List[Tuple[str, str]] = []
    for column, value in (filters or {}).items():
        if is_multi(value):
            params.append((column, f"in.({','.join(_quote_in(v) for v in value)})"))
        elif value is None:
            params.append((column, "is.null"))
        else:
            params.append((column, f"eq.{_format_value(value)}"))
    return params


class RestRecordStore:
    """Thin PostgREST client for a hosted backend, with session, timeouts and logging.

    Tables live under ``<base_url>/rest/v1/<table>``; writes ask for the
    written representation back so callers see server-assigned ids.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        access_token: Optional[str] = None,
        timeout: int = 30,
        verify_tls: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = int(timeout)
        self.verify = bool(verify_tls)
        self.log = get_logger("store-rest")
        self.s = session or requests.Session()
        self.s.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

    def set_access_token(self, token: Optional[str]) -> None:
        """Switch to a signed-in user's token so row-level policies apply; None goes back to the anon key."""
        self.s.headers["Authorization"] = f"Bearer {token or self.api_key}"

    # ---------- helpers ----------
    def _url(self, table: str) -> str:
        return f"{self.base}/rest/v1/{table}"

    def _json(self, r: requests.Response, table: str) -> Any:
        if r.status_code >= 400:
            preview = (r.text or "")[:500]
            self.log.error(f"{table} -> HTTP {r.status_code}: {preview}")
            raise StoreError(f"{table}: HTTP {r.status_code}", table=table, status=r.status_code)
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as exc:
            raise StoreError(f"{table}: response was not JSON", table=table, status=r.status_code) from exc

    def _send(self, method: str, table: str, **kwargs: Any) -> requests.Response:
        try:
            return self.s.request(method, self._url(table), timeout=self.timeout, verify=self.verify, **kwargs)
        except requests.RequestException as exc:
            self.log.error(f"{method} {table} failed: {exc}")
            raise StoreError(f"{table}: {exc}", table=table) from exc

    # ---------- CRUD ----------
    def select(
        self,
        table: str,
        *,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        params = [("select", "*")] + build_filter_params(filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(int(limit))))
        r = self._send("GET", table, params=params)
        body = self._json(r, table)
        return list(body or [])

    def insert(self, table: str, rows: Union[Row, Sequence[Row]]) -> List[Row]:
        payload = as_rows(rows)
        if not payload:
            return []
        r = self._send("POST", table, json=payload, headers={"Prefer": "return=representation"})
        body = self._json(r, table)
        return list(body or [])

    def update(self, table: str, values: Row, *, filters: Filters) -> List[Row]:
        if not filters:
            raise StoreError(f"update on {table} requires filters", table=table)
        r = self._send(
            "PATCH",
            table,
            params=build_filter_params(filters),
            json=dict(values),
            headers={"Prefer": "return=representation"},
        )
        body = self._json(r, table)
        return list(body or [])

    def delete(self, table: str, *, filters: Filters) -> int:
        if not filters:
            raise StoreError(f"delete on {table} requires filters", table=table)
        r = self._send(
            "DELETE",
            table,
            params=build_filter_params(filters),
            headers={"Prefer": "return=representation"},
        )
        body = self._json(r, table)
        return len(body) if isinstance(body, list) else 0
