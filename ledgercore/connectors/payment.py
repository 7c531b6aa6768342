"""Paper payment gateway: approves every charge, no money moves."""

from __future__ import annotations

import hashlib
import logging
import threading
from decimal import Decimal

from ledgercore.connectors.base import PaymentGateway, PaymentResult

logger = logging.getLogger(__name__)


class PaperPaymentGateway(PaymentGateway):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.charges: dict[str, tuple[str, Decimal, str]] = {}
        self.cancelled_mandates: list[str] = []

    def charge_once(
        self, payer_ref: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> PaymentResult:
        ref = "paper-" + hashlib.sha256(idempotency_key.encode()).hexdigest()[:16]
        with self._lock:
            if idempotency_key in self.charges:
                logger.info("[PAPER] Replayed charge %s -> %s", idempotency_key, ref)
                return PaymentResult(success=True, payment_ref=ref)
            self.charges[idempotency_key] = (payer_ref, amount, currency)
        logger.info("[PAPER] Charged %s %s to %s (%s)", amount, currency, payer_ref, ref)
        return PaymentResult(success=True, payment_ref=ref)

    def cancel_mandate(self, mandate_ref: str) -> None:
        with self._lock:
            self.cancelled_mandates.append(mandate_ref)
        logger.info("[PAPER] Cancelled mandate %s", mandate_ref)
