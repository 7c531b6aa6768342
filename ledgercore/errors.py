"""Typed errors raised by the ledger, backtester and scheduler.

Ledger and tax-lot code raise these to the caller. Only the SIP scheduler
absorbs ExternalServiceError (and ledger errors after a charge) into plan
state instead of propagating.
"""

from __future__ import annotations


class LedgerCoreError(Exception):
    """Base class for all ledgercore errors."""


class TradeValidationError(LedgerCoreError, ValueError):
    """Bad quantity, price, side or unknown asset. Never persisted, never retried."""


class InsufficientHoldingsError(LedgerCoreError):
    """A SELL asks for more than the position holds."""

    def __init__(self, owner: str, asset: str, venue: str, requested, available) -> None:
        self.owner = owner
        self.asset = asset
        self.venue = venue
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot sell {requested} {asset} for {owner}@{venue}: only {available} held"
        )


class UnreconciledSaleError(LedgerCoreError):
    """Open tax lots cannot cover a sell (lots missing from the ledger)."""

    def __init__(self, owner: str, asset: str, requested, covered) -> None:
        self.owner = owner
        self.asset = asset
        self.requested = requested
        self.covered = covered
        super().__init__(
            f"Open lots for {owner}/{asset} cover {covered} of a {requested} sell"
        )


class ReconciliationError(LedgerCoreError):
    """Sum of open lot amounts differs from the position amount."""

    def __init__(self, issues: list) -> None:
        self.issues = issues
        super().__init__(f"{len(issues)} lot/position mismatch(es) detected")


class InsufficientDataError(LedgerCoreError, ValueError):
    """Price series shorter than the indicator warm-up window."""


class BacktestCancelledError(LedgerCoreError):
    """A running backtest observed its cancel event between steps."""


class PlanStateError(LedgerCoreError):
    """Unknown plan or an illegal SIP status transition."""


class ExternalServiceError(LedgerCoreError):
    """A collaborator (price feed, payment gateway) failed or timed out."""


class PriceUnavailableError(ExternalServiceError):
    """The price feed could not supply a price or candles."""


class PaymentFailedError(ExternalServiceError):
    """The payment gateway declined, errored or timed out."""
