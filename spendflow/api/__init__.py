"""Plaid API client module."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TypeVar

import httpx

from spendflow.config import PlaidConfig
from spendflow.errors import ConfigError, ErrorKind, SpendflowError

log = logging.getLogger("spendflow.api")

BASE_URLS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}
PERSONAL_FINANCE_CATEGORY_VERSION = "v2"
DEFAULT_TIMEOUT = 30.0

T = TypeVar("T")

MUTATION_DURING_PAGINATION = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


def _iso_date(value: str | None) -> str | None:
    """Check a provider ``YYYY-MM-DD`` date, returning it unchanged."""
    if value is None:
        return None
    date.fromisoformat(value)
    return value


@dataclass
class PlaidAccount:
    """Account snapshot returned alongside a sync page."""

    account_id: str
    name: str
    type: str
    official_name: str | None
    subtype: str | None
    mask: str | None


@dataclass
class PlaidTransaction:
    """Added or modified transaction from a sync page."""

    transaction_id: str
    account_id: str
    amount: Decimal
    date: str
    name: str
    authorized_date: str | None = None
    iso_currency_code: str | None = None
    merchant_name: str | None = None
    original_description: str | None = None
    pending: bool = False
    pending_transaction_id: str | None = None
    category_primary: str | None = None
    category_detailed: str | None = None


@dataclass
class PlaidRemovedTransaction:
    """Tombstone for a transaction the provider no longer reports."""

    transaction_id: str
    account_id: str | None = None


@dataclass
class SyncPage:
    """One page of the transactions delta feed."""

    added: list[PlaidTransaction]
    modified: list[PlaidTransaction]
    removed: list[PlaidRemovedTransaction]
    accounts: list[PlaidAccount]
    next_cursor: str
    has_more: bool


@dataclass
class TokenExchange:
    """Result of exchanging a public token."""

    access_token: str
    item_id: str


class PlaidClient:
    """Async client for the Plaid API."""

    def __init__(self, config: PlaidConfig, timeout: float = DEFAULT_TIMEOUT):
        if not config.is_configured:
            raise ConfigError("Plaid client_id and secret are required")
        self._config = config
        self._base_url = BASE_URLS[config.environment]
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "PlaidClient":
        """Enter async context."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._get_headers(),
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_sandbox(self) -> bool:
        return self._config.is_sandbox

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with client credentials."""
        return {
            "PLAID-CLIENT-ID": self._config.client_id,
            "PLAID-SECRET": self._config.secret,
            "Content-Type": "application/json",
        }

    async def _post(self, endpoint: str, payload: dict) -> dict:
        """POST to an endpoint, translating failures into PlaidAPIError."""
        if self._client is None:
            raise RuntimeError("PlaidClient must be used as an async context manager")
        try:
            response = await self._client.post(endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise PlaidAPIError(f"Timed out calling {endpoint}", retryable=True) from e
        except httpx.TransportError as e:
            raise PlaidAPIError(f"Network error calling {endpoint}: {e}", retryable=True) from e
        if response.status_code >= 400:
            raise PlaidAPIError.from_response(endpoint, response)
        try:
            data = response.json()
        except ValueError as e:
            raise PlaidAPIError(
                f"{endpoint} returned a non-JSON body", status_code=response.status_code
            ) from e
        if not isinstance(data, dict):
            raise PlaidAPIError(
                f"{endpoint} returned an unexpected body", status_code=response.status_code
            )
        return data

    async def transactions_sync(
        self,
        access_token: str,
        cursor: str | None = None,
        count: int = 500,
    ) -> SyncPage:
        """Fetch one page of added/modified/removed transactions after ``cursor``."""
        payload: dict = {
            "access_token": access_token,
            "count": count,
            "options": {
                "include_original_description": True,
                "personal_finance_category_version": PERSONAL_FINANCE_CATEGORY_VERSION,
            },
        }
        if cursor:
            payload["cursor"] = cursor
        data = await self._post("/transactions/sync", payload)
        log.debug(f"transactions/sync request_id={data.get('request_id')}")
        return self._parse_body("/transactions/sync", self._parse_sync_page, data)

    async def link_token_create(self, client_user_id: str = "local-user") -> str:
        """Create a Link session token for connecting a new institution."""
        payload = {
            "user": {"client_user_id": client_user_id},
            "client_name": self._config.client_name,
            "products": ["transactions"],
            "country_codes": list(self._config.country_codes),
            "language": "en",
            "transactions": {"days_requested": self._config.days_requested},
        }
        data = await self._post("/link/token/create", payload)
        return self._parse_body("/link/token/create", lambda d: str(d["link_token"]), data)

    async def item_public_token_exchange(self, public_token: str) -> TokenExchange:
        """Exchange a Link public token for a long-lived access token."""
        data = await self._post("/item/public_token/exchange", {"public_token": public_token})
        return self._parse_body(
            "/item/public_token/exchange",
            lambda d: TokenExchange(access_token=d["access_token"], item_id=d["item_id"]),
            data,
        )

    async def sandbox_transactions_create(
        self, access_token: str, transactions: list[dict]
    ) -> None:
        """Push custom transactions into a sandbox item."""
        if not self.is_sandbox:
            raise ConfigError("Seeding transactions is only available in the sandbox")
        await self._post(
            "/sandbox/transactions/create",
            {"access_token": access_token, "transactions": transactions},
        )

    def _parse_body(self, endpoint: str, parser: Callable[[dict], T], data: dict) -> T:
        """Run ``parser`` over a response body, reporting malformed data as a provider error."""
        try:
            return parser(data)
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise PlaidAPIError(
                f"{endpoint} returned malformed data: {type(e).__name__}: {e}",
                request_id=data.get("request_id"),
            ) from e

    def _parse_sync_page(self, data: dict) -> SyncPage:
        """Parse one /transactions/sync response body."""
        return SyncPage(
            added=[self._parse_transaction(t) for t in data.get("added") or []],
            modified=[self._parse_transaction(t) for t in data.get("modified") or []],
            removed=[self._parse_removed(r) for r in data.get("removed") or []],
            accounts=[self._parse_account(a) for a in data.get("accounts") or []],
            next_cursor=data["next_cursor"],
            has_more=bool(data.get("has_more", False)),
        )

    def _parse_account(self, data: dict) -> PlaidAccount:
        """Parse account data from API response."""
        return PlaidAccount(
            account_id=data["account_id"],
            name=data["name"],
            type=data["type"],
            official_name=data.get("official_name"),
            subtype=data.get("subtype"),
            mask=data.get("mask"),
        )

    def _parse_transaction(self, data: dict) -> PlaidTransaction:
        """Parse transaction data from API response."""
        pfc = data.get("personal_finance_category") or {}
        return PlaidTransaction(
            transaction_id=data["transaction_id"],
            account_id=data["account_id"],
            amount=Decimal(str(data["amount"])),
            date=_iso_date(data["date"]),
            name=data.get("name") or "",
            authorized_date=_iso_date(data.get("authorized_date")),
            iso_currency_code=data.get("iso_currency_code"),
            merchant_name=data.get("merchant_name"),
            original_description=data.get("original_description"),
            pending=bool(data.get("pending", False)),
            pending_transaction_id=data.get("pending_transaction_id"),
            category_primary=pfc.get("primary"),
            category_detailed=pfc.get("detailed"),
        )

    def _parse_removed(self, data: dict) -> PlaidRemovedTransaction:
        """Parse removed transaction data from API response."""
        return PlaidRemovedTransaction(
            transaction_id=data["transaction_id"],
            account_id=data.get("account_id"),
        )


class PlaidAPIError(SpendflowError):
    """Exception raised for Plaid API errors."""

    kind = ErrorKind.PROVIDER

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_type: str | None = None,
        error_code: str | None = None,
        request_id: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.error_code = error_code
        self.request_id = request_id
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        """Whether re-running the operation later may succeed."""
        if self._retryable or self.error_code == RATE_LIMIT_EXCEEDED:
            return True
        return self.status_code is not None and (
            self.status_code >= 500 or self.status_code == 429
        )

    @classmethod
    def from_response(cls, endpoint: str, response: httpx.Response) -> "PlaidAPIError":
        """Build an error from a Plaid error response body."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        error_code = body.get("error_code")
        detail = body.get("display_message") or body.get("error_message") or response.text
        message = f"{endpoint} failed ({response.status_code}"
        message += f", {error_code})" if error_code else ")"
        if detail:
            message += f": {detail}"
        return cls(
            message,
            status_code=response.status_code,
            error_type=body.get("error_type"),
            error_code=error_code,
            request_id=body.get("request_id"),
        )
