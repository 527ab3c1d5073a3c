from abc import ABC, abstractmethod
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string


class SalesLedger(ABC):
    """Sales-side collaborator consulted when a shift is closed.

    Deployments point `SHIFT_SALES_LEDGER` at a subclass backed by their order
    and payment records. Amounts are totals accrued since the shift opened.
    """

    @abstractmethod
    def net_cash_sales(self, shift) -> Decimal:
        ...

    @abstractmethod
    def net_cash_refunds(self, shift) -> Decimal:
        ...

    @abstractmethod
    def has_pending_orders(self, shift) -> bool:
        ...


class NullSalesLedger(SalesLedger):
    def net_cash_sales(self, shift):
        return Decimal("0.00")

    def net_cash_refunds(self, shift):
        return Decimal("0.00")

    def has_pending_orders(self, shift):
        return False


def get_sales_ledger() -> SalesLedger:
    ledger_class = import_string(settings.SHIFT_SALES_LEDGER)
    if not (isinstance(ledger_class, type) and issubclass(ledger_class, SalesLedger)):
        raise ImproperlyConfigured(f"SHIFT_SALES_LEDGER must name a SalesLedger subclass, got {settings.SHIFT_SALES_LEDGER!r}.")
    return ledger_class()
