"""
PhonePe Standard Checkout (v2) client.

Handles:
    1. OAuth client-credentials token fetch + in-memory cache
    2. Payment creation (returns the hosted checkout redirect URL)
    3. Order status lookup (authoritative payment state)
    4. Helpers that pull the transaction reference out of a status response

Sandbox vs production is decided by the base URL: anything on
api.phonepe.com is production and uses the identity-manager token endpoint
and the /apis/pg prefix; everything else uses /apis/pg-sandbox.

Transient failures (network errors, 5xx, 429) are retried with exponential
backoff. A 401 drops the cached token and retries once with a fresh one.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from config import settings
from domain.enums import PaymentState
from domain.errors import ConfigurationError, PaymentGatewayError
from utils.safe_logging import sanitize_gateway_payload

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_BUFFER_SECONDS = 300
MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 0.5
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class PhonePeClient:
    """Async client for one PhonePe merchant account."""

    def __init__(
        self,
        *,
        base_url: str,
        client_id: str,
        client_secret: str,
        client_version: str = "1",
        timeout: float = 15.0,
        expire_after_seconds: int = 1200,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not client_id or not client_secret:
            raise ConfigurationError("PhonePe credentials are not configured")
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.client_version = client_version
        self.timeout = timeout
        self.expire_after_seconds = expire_after_seconds
        self.backoff_base = backoff_base
        self._transport = transport

        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    # ── Endpoints ───────────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return "api.phonepe.com" in self.base_url

    @property
    def token_path(self) -> str:
        if self.is_production:
            return "/apis/identity-manager/v1/oauth/token"
        return "/apis/pg-sandbox/v1/oauth/token"

    @property
    def pg_prefix(self) -> str:
        return "/apis/pg" if self.is_production else "/apis/pg-sandbox"

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    # ── OAuth token ─────────────────────────────────────────────────

    def _token_valid(self, now: float | None = None) -> bool:
        now = now if now is not None else time.time()
        return bool(self._access_token) and self._token_expires_at > now + TOKEN_EXPIRY_BUFFER_SECONDS

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    async def get_access_token(self) -> str:
        """Return a cached token, fetching a new one when it is within 5 min of expiry."""
        if self._token_valid():
            return self._access_token

        async with self._token_lock:
            # Another coroutine may have refreshed while we waited
            if self._token_valid():
                return self._access_token

            form = {
                "client_id": self.client_id,
                "client_version": self.client_version,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            }
            data = await self._send(
                "POST",
                self.token_path,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                authenticated=False,
            )

            token = data.get("access_token")
            if not token:
                raise PaymentGatewayError("PhonePe token response missing access_token")

            expires_at = data.get("expires_at")
            if not expires_at and data.get("expires_in"):
                expires_at = time.time() + float(data["expires_in"])
            self._access_token = token
            self._token_expires_at = float(expires_at or 0)
            logger.info("PhonePe access token refreshed")
            return token

    # ── Transport with retry ────────────────────────────────────────

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: Any = None,
        params: dict | None = None,
        headers: dict | None = None,
        authenticated: bool = True,
    ) -> dict:
        url = f"{self.base_url}{path}"
        refreshed_after_401 = False
        last_error: str = ""

        attempt = 0
        while attempt < MAX_ATTEMPTS:
            request_headers = dict(headers or {})
            if authenticated:
                request_headers["Authorization"] = f"O-Bearer {await self.get_access_token()}"
            if json is not None:
                request_headers.setdefault("Content-Type", "application/json")

            try:
                async with self._http() as client:
                    response = await client.request(
                        method, url, json=json, data=data, params=params, headers=request_headers,
                    )
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"PhonePe {method} {path} transport error (attempt {attempt + 1}/{MAX_ATTEMPTS}): {e}")
            else:
                if response.status_code == 401 and authenticated and not refreshed_after_401:
                    # Token revoked or rotated server-side; retry once with a fresh one
                    refreshed_after_401 = True
                    self.invalidate_token()
                    continue

                if response.status_code in RETRYABLE_STATUS:
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        f"PhonePe {method} {path} returned {response.status_code} "
                        f"(attempt {attempt + 1}/{MAX_ATTEMPTS})"
                    )
                elif response.status_code >= 400:
                    raise PaymentGatewayError(
                        f"PhonePe request failed with status {response.status_code}",
                        details={
                            "status_code": response.status_code,
                            "body": sanitize_gateway_payload(_safe_json(response)),
                        },
                    )
                else:
                    body = _safe_json(response)
                    if not isinstance(body, dict):
                        raise PaymentGatewayError("PhonePe returned a non-JSON response")
                    return body

            attempt += 1
            if attempt < MAX_ATTEMPTS:
                await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))

        raise PaymentGatewayError(
            "PhonePe is unavailable, please try again",
            details={"path": path, "last_error": last_error, "attempts": MAX_ATTEMPTS},
        )

    # ── API calls ───────────────────────────────────────────────────

    async def create_payment(
        self,
        *,
        merchant_order_id: str,
        amount_rupees: float,
        redirect_url: str,
        message: str = "",
        meta_info: dict | None = None,
    ) -> dict:
        """
        Create a checkout session.

        Returns {orderId, state, expireAt, redirectUrl}; redirectUrl is the
        hosted payment page the shopper should be sent to.
        """
        meta = {f"udf{i}": "" for i in range(1, 6)}
        meta.update({k: str(v)[:256] for k, v in (meta_info or {}).items() if k in meta})

        body = {
            "merchantOrderId": merchant_order_id,
            "amount": rupees_to_paise(amount_rupees),
            "expireAfter": self.expire_after_seconds,
            "metaInfo": meta,
            "paymentFlow": {
                "type": "PG_CHECKOUT",
                "message": message or f"Payment for order {merchant_order_id}",
                "merchantUrls": {"redirectUrl": redirect_url},
            },
        }
        data = await self._send("POST", f"{self.pg_prefix}/checkout/v2/pay", json=body)
        if not data.get("redirectUrl"):
            raise PaymentGatewayError(
                "PhonePe did not return a payment URL",
                details={"response": sanitize_gateway_payload(data)},
            )
        logger.info(
            f"  💳 PhonePe checkout created: {merchant_order_id} "
            f"(₹{amount_rupees:.2f}, gateway order {data.get('orderId')})"
        )
        return {
            "orderId": data.get("orderId"),
            "state": data.get("state", PaymentState.PENDING.value),
            "expireAt": data.get("expireAt"),
            "redirectUrl": data["redirectUrl"],
        }

    async def get_order_status(self, merchant_order_id: str, details: bool = True) -> dict:
        """Authoritative order status, including paymentDetails when details=True."""
        return await self._send(
            "GET",
            f"{self.pg_prefix}/checkout/v2/order/{merchant_order_id}/status",
            params={"details": "true" if details else "false"},
        )


# ════════════════════════════════════════════════════════════════════
# Helpers
# ════════════════════════════════════════════════════════════════════


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text[:500]}


def rupees_to_paise(amount: float) -> int:
    return int(round(float(amount) * 100))


def paise_to_rupees(amount: Any) -> float | None:
    if amount is None:
        return None
    return round(int(amount) / 100, 2)


def latest_completed_payment(status: dict) -> dict | None:
    completed = [
        p for p in (status.get("paymentDetails") or [])
        if p.get("state") == PaymentState.COMPLETED.value
    ]
    if not completed:
        return None
    return max(completed, key=lambda p: p.get("timestamp") or 0)


def extract_transaction_id(status: dict) -> str | None:
    """transactionId of the most recent COMPLETED payment attempt."""
    payment = latest_completed_payment(status)
    return payment.get("transactionId") if payment else None


def extract_payment_info(status: dict) -> dict:
    """Fields persisted on the order once a payment completes."""
    payment = latest_completed_payment(status)
    if not payment:
        return {}

    rail = payment.get("rail") or {}
    instrument = payment.get("instrument") or {}
    masked = (
        instrument.get("maskedCardNumber")
        or instrument.get("maskedAccountNumber")
        or ""
    )
    digits = "".join(ch for ch in masked if ch.isdigit())

    timestamp = payment.get("timestamp")
    paid_at = (
        datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).replace(tzinfo=None)
        if timestamp else None
    )

    return {
        "payment_mode": payment.get("paymentMode"),
        "payment_transaction_id": payment.get("transactionId"),
        "utr": rail.get("utr") or rail.get("upiTransactionId"),
        "bank_name": instrument.get("bankName") or rail.get("bankName") or instrument.get("bankId"),
        "account_type": instrument.get("accountType"),
        "card_last4": digits[-4:] if "CARD" in (instrument.get("type") or "").upper() and digits else None,
        "payable_amount": paise_to_rupees(payment.get("payableAmount") or payment.get("amount")),
        "payment_timestamp": paid_at,
    }


_client: Optional[PhonePeClient] = None


def get_phonepe_client() -> PhonePeClient:
    """Process-wide client built from settings (keeps the token cache warm)."""
    global _client
    if _client is None:
        if not settings.phonepe_configured:
            raise ConfigurationError("PhonePe credentials are not configured")
        _client = PhonePeClient(
            base_url=settings.phonepe_base_url,
            client_id=settings.phonepe_client_id,
            client_secret=settings.phonepe_client_secret,
            client_version=settings.phonepe_client_version,
            timeout=settings.phonepe_timeout_seconds,
            expire_after_seconds=settings.phonepe_order_expiry_seconds,
        )
    return _client
