import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import requests

from tickethub.core.config import settings
from tickethub.core.security import sign_payload


@dataclass
class PaymentGatewayConfig:
    base_url: str       # e.g. https://checkout.example.com
    app_id: str         # X-App-Id header
    secret: str         # shared HMAC secret, also used for webhook signatures
    timeout: int = 15


class PaymentInitiatorError(RuntimeError):
    """Checkout could not be started.

    `maybe_completed` is set on timeouts: the gateway may still have created the
    checkout, so the session stays open and a later confirmation is accepted.
    """

    def __init__(self, message: str, maybe_completed: bool = False):
        super().__init__(message)
        self.maybe_completed = maybe_completed


class PaymentInitiatorClient:
    def __init__(self, cfg: PaymentGatewayConfig):
        self.cfg = cfg

    def _headers(self, body_bytes: bytes) -> dict:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-App-Id": self.cfg.app_id,
            "X-Timestamp": datetime.now(timezone.utc).isoformat(),
            "X-Signature": sign_payload(self.cfg.secret, body_bytes),
        }

    def request(self, method: str, path: str, payload: dict | None = None) -> dict:
        body_bytes = json.dumps(payload or {}, separators=(",", ":")).encode("utf-8")
        url = f"{self.cfg.base_url.rstrip('/')}{path}"
        try:
            r = requests.request(method=method.upper(), url=url, data=body_bytes,
                                 headers=self._headers(body_bytes), timeout=self.cfg.timeout)
        except requests.Timeout as e:
            raise PaymentInitiatorError(f"gateway timed out after {self.cfg.timeout}s", maybe_completed=True) from e
        except requests.RequestException as e:
            raise PaymentInitiatorError(f"gateway unreachable: {e}") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            raise PaymentInitiatorError(f"gateway {r.status_code}: {data}")
        return data

    def initiate(self, amount: Decimal, reference: str, notify_url: str = "", title: str = "") -> str:
        """Start a checkout for `reference` and return the URL to send the customer to."""
        payload = {
            "merchantOrderId": reference,
            "amount": str(amount),
            "currency": settings.CURRENCY,
            "title": title or "Trip tickets",
            "notifyUrl": notify_url,
        }
        data = self.request("POST", "/checkout/orders", payload)
        redirect = data.get("redirectUrl") or data.get("checkoutUrl") or ""
        if not redirect:
            raise PaymentInitiatorError(f"gateway returned no redirect url: {data}")
        return redirect


def gateway_client() -> PaymentInitiatorClient:
    if not (settings.PAYMENT_GATEWAY_URL and settings.PAYMENT_GATEWAY_APP_ID and settings.PAYMENT_GATEWAY_SECRET):
        raise PaymentInitiatorError("automated checkout is not configured")
    return PaymentInitiatorClient(PaymentGatewayConfig(
        base_url=settings.PAYMENT_GATEWAY_URL,
        app_id=settings.PAYMENT_GATEWAY_APP_ID,
        secret=settings.PAYMENT_GATEWAY_SECRET,
        timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
    ))
