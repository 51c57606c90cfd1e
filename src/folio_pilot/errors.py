"""
Structural errors raised by the engine.

These abort only the operation that caused them. Computational degradations
(missing prices, non-convergent IRR, degraded selection) are not exceptions;
they are reported as ReportCondition entries on the result.
"""

from decimal import Decimal
from typing import Optional


class FolioPilotError(Exception):
    """Base class for engine errors."""
    pass


class InvalidInputError(FolioPilotError):
    """Raised when an input fails validation before any state is mutated."""

    def __init__(
        self,
        message: str,
        asset_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.asset_id = asset_id
        self.account_id = account_id


class InsufficientLotsError(FolioPilotError):
    """Raised when a sale requests more units than are open for (asset, account)."""

    def __init__(
        self,
        asset_id: str,
        account_id: Optional[str],
        requested: Decimal,
        available: Decimal,
    ):
        super().__init__(
            f"Cannot sell {requested} units of {asset_id} in account {account_id}: "
            f"only {available} open"
        )
        self.asset_id = asset_id
        self.account_id = account_id
        self.requested = requested
        self.available = available
