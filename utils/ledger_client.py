from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import requests

logger = logging.getLogger(__name__)


class LedgerAPIError(Exception):
    """The API rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LedgerClient:
    """
    Thin HTTP client used by the dashboard. One instance per signed-in user.

    Write calls return {"id", "ledger"}; ledger is None when the write was
    saved but the server could not re-fetch the ledger afterwards.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        user_id_header: str = "X-User-Id",
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers[user_id_header] = user_id

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            resp = self.session.request(method, f"{self.base_url}{path}", **kwargs)
        except requests.RequestException as e:
            logger.error(f"Ledger API unreachable: {e}")
            raise LedgerAPIError(f"Ledger service unreachable: {e}")
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise LedgerAPIError(str(detail), status_code=resp.status_code)
        return resp.json()

    def ledger(self) -> dict:
        """The current ledger snapshot."""
        return self._request("GET", "/expenses")

    def add_expense(
        self,
        friend_name: str,
        amount: str,
        type: str,
        date: str,
        description: str = "",
    ) -> dict:
        payload = {
            "friend_name": friend_name,
            "amount": amount,
            "type": type,
            "date": date,
            "description": description,
        }
        return self._request("POST", "/expenses", json=payload)

    def update_expense(self, expense_id: str, **changes: Any) -> dict:
        return self._request("PATCH", f"/expenses/{expense_id}", json=changes)

    def delete_expense(self, expense_id: str) -> dict:
        return self._request("DELETE", f"/expenses/{expense_id}")

    def settle(self, friend_name: str) -> dict:
        return self._request(
            "POST", "/settlements", json={"friend_name": friend_name}
        )


def to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))
