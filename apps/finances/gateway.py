"""
Transfer Gateway Adapter

Moves money out of the platform balance through Paystack:
- transfers to a talent's M-Pesa number (payouts and adjustments)
- refunds of an organizer's card/M-Pesa payment
- verification of the organizer's incoming payment

Every network failure that might have left the request unanswered
(timeouts, connection errors, 5xx, 429) is raised as GatewayUnavailable
and is safe to retry with the same reference. An explicit refusal from
the provider is raised as GatewayRejected.

When no Paystack key is configured (development, tests) the
SandboxTransferGateway emulates the provider in memory.
"""

from __future__ import annotations

import hashlib
import hmac
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache

import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from shared.domain.exceptions import GatewayRejected, GatewayUnavailable
from shared.domain.value_objects import Money
from shared.infrastructure.encryption import mask_account

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"
PENDING = "pending"

# Paystack transfer status -> outcome; anything else is still in flight
TRANSFER_OUTCOMES = {
    "success": SUCCEEDED,
    "failed": FAILED,
    "reversed": FAILED,
    "abandoned": FAILED,
    "blocked": FAILED,
    "rejected": FAILED,
}

REFUND_OUTCOMES = {
    "processed": SUCCEEDED,
    "failed": FAILED,
}


def failure_reason(data: dict, status: str, subject: str = "Transfer") -> str:
    """
    Provider-side cause of a failed transfer or refund

    Paystack echoes our own description back as ``reason`` on transfers
    and ``merchant_note`` on refunds. Neither says why money did not move,
    so only ``failures``, ``gateway_response`` and ``message`` are read.
    """
    failures = data.get("failures")
    if isinstance(failures, (list, tuple)):
        failures = "; ".join(text for text in map(_failure_text, failures) if text)
    elif isinstance(failures, dict):
        failures = _failure_text(failures)
    for candidate in (failures, data.get("gateway_response"), data.get("message")):
        if candidate:
            return str(candidate)
    return f"{subject} {status or 'failed'}."


def _failure_text(item) -> str:
    if isinstance(item, dict):
        return str(item.get("reason") or item.get("message") or item.get("error") or "")
    return str(item or "")


@dataclass(frozen=True)
class Recipient:
    recipient_code: str
    account_number: str
    name: str = ""


@dataclass(frozen=True)
class TransferResult:
    reference: str
    outcome: str
    gateway_status: str
    transfer_code: str = ""
    amount_minor: int | None = None
    reason: str = ""
    payload: dict = field(default_factory=dict, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.outcome == SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.outcome == FAILED


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    outcome: str
    gateway_status: str
    amount_minor: int | None = None
    reason: str = ""
    payload: dict = field(default_factory=dict, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.outcome == SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.outcome == FAILED


@dataclass(frozen=True)
class PaymentResult:
    reference: str
    succeeded: bool
    gateway_status: str
    amount_minor: int | None = None
    currency: str = ""
    payload: dict = field(default_factory=dict, compare=False)


class TransferGateway(ABC):
    """Interface the settlement orchestrator talks to"""

    @abstractmethod
    def resolve_recipient(self, destination, currency: str) -> Recipient:
        """Find the provider-side recipient for ``destination``, creating it if absent"""

    @abstractmethod
    def initiate_transfer(self, *, reference: str, amount: Money, recipient_code: str, reason: str = "") -> TransferResult:
        """Start a transfer. Repeating a reference never creates a second transfer."""

    @abstractmethod
    def verify_transfer(self, reference: str) -> TransferResult:
        pass

    @abstractmethod
    def initiate_refund(self, *, payment_reference: str, amount: Money, note: str = "") -> RefundResult:
        """Refund part or all of a payment. At most one live refund per payment."""

    @abstractmethod
    def verify_refund(self, refund_id: str) -> RefundResult:
        pass

    @abstractmethod
    def verify_payment(self, reference: str) -> PaymentResult:
        pass


def verify_webhook_signature(body: bytes, signature: str, secret: str | None = None) -> bool:
    """Check Paystack's HMAC-SHA512 ``x-paystack-signature`` header"""
    secret = secret if secret is not None else settings.PAYSTACK_SECRET_KEY
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


# ============================================================================
# PAYSTACK
# ============================================================================

class PaystackTransferGateway(TransferGateway):
    """Paystack REST API client"""

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 30,
        max_retries: int = 3,
    ):
        if not secret_key:
            raise ImproperlyConfigured("PAYSTACK_SECRET_KEY is required for the Paystack gateway.")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        # Only lookups are retried at the HTTP layer; POSTs are retried by
        # the settlement flow with the same reference.
        retry = Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        self.session.mount("https://", HTTPAdapter(max_retries=retry))
        self.session.mount("http://", HTTPAdapter(max_retries=retry))

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.warning(f"Paystack {method} {path} timed out: {e}")
            raise GatewayUnavailable(f"Payment provider timed out: {e}", path=path)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Paystack {method} {path} failed: {e}")
            raise GatewayUnavailable(f"Could not reach payment provider: {e}", path=path)

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Paystack {method} {path} answered {response.status_code}")
            raise GatewayUnavailable(
                f"Payment provider answered {response.status_code}.",
                path=path,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            raise GatewayUnavailable("Payment provider returned an unreadable response.", path=path)
        if not isinstance(body, dict):
            raise GatewayUnavailable("Payment provider returned an unexpected response.", path=path)

        if not response.ok or not body.get("status"):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.error(f"Paystack {method} {path} rejected: {message}")
            raise GatewayRejected(message, payload=body, status_code=response.status_code)

        return body

    @staticmethod
    def _data(body: dict, path: str, *required: str) -> dict:
        """
        ``body["data"]`` with the keys the caller relies on

        A 2xx answer in a shape we cannot read is treated like no answer:
        the outcome is unknown, so the caller retries with the same reference.
        """
        data = body.get("data")
        if not isinstance(data, dict):
            missing = ["data"]
        else:
            missing = [key for key in required if not data.get(key)]
        if missing:
            logger.error(f"Paystack {path} answered without {', '.join(missing)}")
            raise GatewayUnavailable(
                "Payment provider returned an unexpected response.",
                path=path,
                missing=missing,
            )
        return data

    @staticmethod
    def _items(body: dict) -> list:
        data = body.get("data")
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    # --- Recipients ----------------------------------------------------------

    def resolve_recipient(self, destination, currency: str) -> Recipient:
        body = self._request("GET", "/transferrecipient", params={"perPage": 100})
        for item in self._items(body):
            details = item.get("details") or {}
            if not item.get("recipient_code"):
                continue
            if details.get("account_number") == destination.account_number and item.get("active", True):
                logger.info(f"Reusing Paystack recipient {item['recipient_code']} for {destination.masked}")
                return Recipient(
                    recipient_code=item["recipient_code"],
                    account_number=destination.account_number,
                    name=item.get("name", ""),
                )

        body = self._request("POST", "/transferrecipient", json={
            "type": destination.type,
            "name": destination.account_name,
            "account_number": destination.account_number,
            "bank_code": destination.bank_code,
            "currency": currency,
        })
        data = self._data(body, "/transferrecipient", "recipient_code")
        logger.info(f"Created Paystack recipient {data['recipient_code']} for {destination.masked}")
        return Recipient(
            recipient_code=data["recipient_code"],
            account_number=destination.account_number,
            name=data.get("name", ""),
        )

    # --- Transfers -----------------------------------------------------------

    def initiate_transfer(self, *, reference: str, amount: Money, recipient_code: str, reason: str = "") -> TransferResult:
        try:
            body = self._request("POST", "/transfer", json={
                "source": "balance",
                "amount": amount.minor_units,
                "currency": amount.currency,
                "recipient": recipient_code,
                "reference": reference,
                "reason": reason,
            })
        except GatewayRejected as e:
            if "duplicate" in e.message.lower() or "already" in e.message.lower():
                logger.info(f"Transfer {reference} already exists at Paystack, verifying")
                return self.verify_transfer(reference)
            raise
        return self._transfer_result(self._data(body, "/transfer"), reference)

    def verify_transfer(self, reference: str) -> TransferResult:
        path = f"/transfer/verify/{reference}"
        return self._transfer_result(self._data(self._request("GET", path), path), reference)

    @staticmethod
    def _transfer_result(data: dict, reference: str) -> TransferResult:
        status = (data.get("status") or "").lower()
        outcome = TRANSFER_OUTCOMES.get(status, PENDING)
        return TransferResult(
            reference=data.get("reference") or reference,
            outcome=outcome,
            gateway_status=status,
            transfer_code=data.get("transfer_code") or "",
            amount_minor=data.get("amount"),
            reason=failure_reason(data, status) if outcome == FAILED else "",
            payload=data,
        )

    # --- Refunds -------------------------------------------------------------

    def initiate_refund(self, *, payment_reference: str, amount: Money, note: str = "") -> RefundResult:
        existing = self._request("GET", "/refund", params={"transaction": payment_reference})
        for item in self._items(existing):
            if item.get("id") and REFUND_OUTCOMES.get((item.get("status") or "").lower()) != FAILED:
                logger.info(f"Refund {item['id']} already exists for payment {payment_reference}")
                return self._refund_result(item)

        body = self._request("POST", "/refund", json={
            "transaction": payment_reference,
            "amount": amount.minor_units,
            "currency": amount.currency,
            "merchant_note": note,
        })
        return self._refund_result(self._data(body, "/refund", "id"))

    def verify_refund(self, refund_id: str) -> RefundResult:
        path = f"/refund/{refund_id}"
        return self._refund_result(self._data(self._request("GET", path), path, "id"))

    @staticmethod
    def _refund_result(data: dict) -> RefundResult:
        status = (data.get("status") or "").lower()
        outcome = REFUND_OUTCOMES.get(status, PENDING)
        return RefundResult(
            refund_id=str(data.get("id", "")),
            outcome=outcome,
            gateway_status=status,
            amount_minor=data.get("amount"),
            reason=failure_reason(data, status, "Refund") if outcome == FAILED else "",
            payload=data,
        )

    # --- Payments ------------------------------------------------------------

    def verify_payment(self, reference: str) -> PaymentResult:
        path = f"/transaction/verify/{reference}"
        data = self._data(self._request("GET", path), path)
        status = (data.get("status") or "").lower()
        return PaymentResult(
            reference=reference,
            succeeded=status == "success",
            gateway_status=status,
            amount_minor=data.get("amount"),
            currency=data.get("currency") or "",
            payload=data,
        )


# ============================================================================
# SANDBOX
# ============================================================================

class SandboxTransferGateway(TransferGateway):
    """
    In-memory emulation of the transfer provider

    Keeps provider-side state keyed by reference, so repeating a reference
    behaves like Paystack does. Failures can be queued per operation:

        gateway.fail_next("initiate_transfer", GatewayUnavailable())
        gateway.fail_next("initiate_transfer", GatewayUnavailable(), after=True)

    ``after=True`` performs the operation and then raises, like a timeout
    that hits after the provider recorded the transfer.
    """

    def __init__(self, transfer_status: str = "success", refund_status: str = "processed"):
        self.transfer_status = transfer_status
        self.refund_status = refund_status
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        self.recipients: dict[str, Recipient] = {}
        self.transfers: dict[str, dict] = {}
        self.refunds: dict[str, dict] = {}
        self.payments: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[str, list[tuple[Exception, bool]]] = {}
        self._ids = itertools.count(1)

    def fail_next(self, operation: str, exc: Exception, after: bool = False):
        self._failures.setdefault(operation, []).append((exc, after))

    def register_payment(self, reference: str, amount: Money, status: str = "success"):
        self.payments[reference] = {
            "reference": reference,
            "status": status,
            "amount": amount.minor_units,
            "currency": amount.currency,
        }

    def settle_transfer(self, reference: str, status: str, gateway_response: str = ""):
        """Move an in-flight transfer to its final status"""
        self.transfers[reference]["status"] = status
        if gateway_response:
            self.transfers[reference]["gateway_response"] = gateway_response

    @property
    def transfer_count(self) -> int:
        return len(self.transfers)

    def _run(self, operation: str, key: str, perform):
        self.calls.append((operation, key))
        queued = self._failures.get(operation)
        failure = queued.pop(0) if queued else None
        if failure and not failure[1]:
            raise failure[0]
        with self._lock:
            result = perform()
        if failure:
            raise failure[0]
        return result

    def resolve_recipient(self, destination, currency: str) -> Recipient:
        def perform():
            recipient = self.recipients.get(destination.account_number)
            if recipient is None:
                recipient = Recipient(
                    recipient_code=f"RCP_sandbox{next(self._ids)}",
                    account_number=destination.account_number,
                    name=destination.account_name,
                )
                self.recipients[destination.account_number] = recipient
                logger.info(f"Sandbox recipient {recipient.recipient_code} for {mask_account(destination.account_number)}")
            return recipient

        return self._run("resolve_recipient", destination.account_number, perform)

    def initiate_transfer(self, *, reference: str, amount: Money, recipient_code: str, reason: str = "") -> TransferResult:
        def perform():
            data = self.transfers.get(reference)
            if data is None:
                data = {
                    "reference": reference,
                    "transfer_code": f"TRF_sandbox{next(self._ids)}",
                    "amount": amount.minor_units,
                    "currency": amount.currency,
                    "recipient": recipient_code,
                    "reason": reason,
                    "status": self.transfer_status,
                }
                self.transfers[reference] = data
                logger.info(f"Sandbox transfer {reference} for {amount}")
            return PaystackTransferGateway._transfer_result(dict(data), reference)

        return self._run("initiate_transfer", reference, perform)

    def verify_transfer(self, reference: str) -> TransferResult:
        def perform():
            data = self.transfers.get(reference)
            if data is None:
                raise GatewayRejected("Transfer not found", payload={"reference": reference})
            return PaystackTransferGateway._transfer_result(dict(data), reference)

        return self._run("verify_transfer", reference, perform)

    def initiate_refund(self, *, payment_reference: str, amount: Money, note: str = "") -> RefundResult:
        def perform():
            for data in self.refunds.values():
                if data["transaction"] == payment_reference and data["status"] != "failed":
                    return PaystackTransferGateway._refund_result(dict(data))
            refund_id = str(next(self._ids))
            data = {
                "id": refund_id,
                "transaction": payment_reference,
                "amount": amount.minor_units,
                "currency": amount.currency,
                "merchant_note": note,
                "status": self.refund_status,
            }
            self.refunds[refund_id] = data
            logger.info(f"Sandbox refund {refund_id} of {amount} on {payment_reference}")
            return PaystackTransferGateway._refund_result(dict(data))

        return self._run("initiate_refund", payment_reference, perform)

    def verify_refund(self, refund_id: str) -> RefundResult:
        def perform():
            data = self.refunds.get(str(refund_id))
            if data is None:
                raise GatewayRejected("Refund not found", payload={"id": refund_id})
            return PaystackTransferGateway._refund_result(dict(data))

        return self._run("verify_refund", str(refund_id), perform)

    def verify_payment(self, reference: str) -> PaymentResult:
        def perform():
            data = self.payments.get(reference)
            if data is None:
                # Emulation accepts any reference, like the dev payment flow
                data = {"reference": reference, "status": "success", "amount": None, "currency": ""}
            return PaymentResult(
                reference=reference,
                succeeded=data["status"] == "success",
                gateway_status=data["status"],
                amount_minor=data["amount"],
                currency=data["currency"],
                payload=dict(data),
            )

        return self._run("verify_payment", reference, perform)


@lru_cache(maxsize=1)
def get_gateway() -> TransferGateway:
    """Gateway selected by settings.PAYMENT_GATEWAY_BACKEND"""
    backend = getattr(settings, "PAYMENT_GATEWAY_BACKEND", "paystack")
    if backend == "sandbox":
        if not settings.DEBUG:
            logger.warning("Using the sandbox transfer gateway with DEBUG off; no money will move")
        return SandboxTransferGateway()
    return PaystackTransferGateway(
        secret_key=settings.PAYSTACK_SECRET_KEY,
        base_url=settings.PAYSTACK_BASE_URL,
        timeout=settings.PAYSTACK_TIMEOUT,
        max_retries=settings.PAYSTACK_MAX_RETRIES,
    )
