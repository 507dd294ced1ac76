from __future__ import annotations

import json
import logging
import time
from datetime import date
from typing import Any, Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from config import get_settings
from schemas import TransactionCreatePayload, TransactionDTO, TransactionPatch
from scopes import order_group

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class RemoteLedgerClient:
    """Ledger gateway backed by the remote transaction store's JSON API.

    Every request gets a per-attempt timeout and is retried a fixed number of
    times with a fixed delay, which covers a backend that is still waking up.
    Client errors (4xx) are not retried.
    """

    supports_parallel = True

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings = get_settings()
        base_url = base_url or settings.remote_url
        if not base_url:
            raise ValueError("Remote ledger URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.timeout = settings.http_timeout_secs if timeout is None else timeout
        self.retries = settings.http_retries if retries is None else retries
        self.retry_delay = (
            settings.http_retry_delay_secs if retry_delay is None else retry_delay
        )
        self._sleep = sleep

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        headers = {"Accept": "application/json"}
        if data is not None:
            headers["Content-Type"] = "application/json"

        attempts = max(self.retries, 0) + 1
        last_exc: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            req = Request(url, data=data, headers=headers, method=method)
            try:
                with urlopen(req, timeout=self.timeout) as resp:
                    raw = resp.read().decode("utf-8")
                return json.loads(raw) if raw.strip() else None
            except HTTPError as exc:
                if exc.code < 500:
                    raise TransportError(
                        f"{method} {path} rejected with HTTP {exc.code}",
                        status=exc.code,
                    ) from exc
                last_exc = exc
            except (URLError, TimeoutError, json.JSONDecodeError) as exc:
                last_exc = exc
            if attempt < attempts:
                logger.warning(
                    f"remote_retry: {method} {path} attempt={attempt} "
                    f"error={last_exc}"
                )
                self._sleep(self.retry_delay)

        logger.error(f"remote_unavailable: {method} {path} attempts={attempts}")
        raise TransportError(
            f"{method} {path} failed after {attempts} attempts"
        ) from last_exc

    def ping(self) -> bool:
        try:
            self._request("GET", "/transactions/filter", params=_today_params())
        except TransportError:
            return False
        return True

    def fetch_transactions(self, month: int, year: int) -> list[TransactionDTO]:
        rows = self._request(
            "GET", "/transactions/filter", params={"month": month, "year": year}
        )
        return [TransactionDTO.from_wire(row) for row in rows or []]

    def fetch_transaction(self, transaction_id: str) -> Optional[TransactionDTO]:
        # No single-record endpoint either; scan the full listing.
        for row in self._request("GET", "/transactions") or []:
            if str(row.get("id")) == transaction_id:
                return TransactionDTO.from_wire(row)
        return None

    def fetch_group(self, group_id: str) -> list[TransactionDTO]:
        # The store has no group endpoint; filter the full listing instead.
        rows = self._request("GET", "/transactions") or []
        members = [
            TransactionDTO.from_wire(row)
            for row in rows
            if row.get("groupId") == group_id
        ]
        return order_group(members)

    def create_transaction(self, payload: TransactionCreatePayload) -> TransactionDTO:
        row = self._request("POST", "/transactions", body=payload.to_wire())
        return TransactionDTO.from_wire(row)

    def update_transaction(
        self, transaction_id: str, patch: TransactionPatch
    ) -> Optional[TransactionDTO]:
        row = self._request(
            "PATCH", f"/transactions/{transaction_id}", body=patch.to_wire()
        )
        return TransactionDTO.from_wire(row) if row else None

    def delete_transaction(self, transaction_id: str) -> None:
        self._request("DELETE", f"/transactions/{transaction_id}")


def _today_params() -> dict[str, int]:
    today = date.today()
    return {"month": today.month, "year": today.year}
