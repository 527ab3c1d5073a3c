from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from common.audit import emit
from common.exceptions import translate_storage_errors
from common.utils import to_money
from core.models import Terminal
from pins import services as pin_services
from shifts.denominations import DenominationLedger
from shifts.exceptions import (
    InvalidAmount,
    InvalidCashMoveType,
    ShiftAlreadyClosed,
    ShiftAlreadyOpen,
    ShiftHasPendingWork,
    ShiftNotOpen,
)
from shifts.ledger import get_sales_ledger
from shifts.models import CashMove, CashShift, ShiftDenomination
from shifts.schedule import ShiftTemplate, ShiftTemplateResolver

logger = logging.getLogger(__name__)

EARLY_OPEN_ACTION = "shift.open_early"


@dataclass(frozen=True)
class EarlyOpenConfirmation:
    reason: str
    note: str = ""
    pin: str | None = None


@dataclass(frozen=True)
class ConfirmationRequired:
    early_minutes: int
    template: ShiftTemplate
    tolerance: int
    pin_required: bool

    def as_dict(self):
        return {
            "early_minutes": self.early_minutes,
            "template": self.template.as_dict(),
            "tolerance": self.tolerance,
            "pin_required": self.pin_required,
        }


@dataclass(frozen=True)
class OpenShiftResult:
    """Either the opened shift or a request for early-open confirmation."""

    shift: CashShift | None = None
    confirmation: ConfirmationRequired | None = None

    @property
    def confirmation_required(self) -> bool:
        return self.confirmation is not None


def _not_open(shift):
    if shift.status == CashShift.Status.CLOSED:
        return ShiftAlreadyClosed(
            shift_id=shift.id,
            closed_at=shift.closed_at,
        )
    return ShiftNotOpen(shift_id=shift.id, status=shift.status)


@translate_storage_errors
def get_open_shift(terminal):
    lookup = {"terminal": terminal} if isinstance(terminal, Terminal) else {"terminal__code": terminal}
    return (
        CashShift.objects.select_related("terminal", "operator")
        .filter(status=CashShift.Status.OPEN, **lookup)
        .first()
    )


@translate_storage_errors
def open_shift(*, terminal, operator, denominations, confirm_early=None, now=None, request=None):
    now = now or timezone.now()

    # Fails fast; the partial unique constraint below is what actually holds the line.
    existing = get_open_shift(terminal)
    if existing is not None:
        raise ShiftAlreadyOpen(terminal=terminal.code, shift_id=existing.id, operator=existing.operator.get_username())

    ledger = DenominationLedger.from_settings()
    breakdown = ledger.normalize(denominations)
    opening_float = ledger.total(breakdown)
    ledger.validate_opening_total(opening_float)

    resolver = ShiftTemplateResolver.from_settings()
    template = resolver.resolve(now).template
    early_minutes = resolver.early_minutes(template, now)

    if resolver.requires_confirmation(early_minutes):
        if confirm_early is None:
            logger.info(
                "shift_open_rejected",
                extra={"terminal": terminal.code, "code": "early_open_confirmation_required"},
            )
            return OpenShiftResult(
                confirmation=ConfirmationRequired(
                    early_minutes=early_minutes,
                    template=template,
                    tolerance=resolver.early_open_tolerance_minutes,
                    pin_required=settings.SHIFT_EARLY_OPEN_REQUIRES_PIN,
                )
            )
        if settings.SHIFT_EARLY_OPEN_REQUIRES_PIN:
            pin_services.verify(
                EARLY_OPEN_ACTION,
                confirm_early.pin,
                actor=operator,
                terminal=terminal,
                request=request,
            )

    try:
        with transaction.atomic():
            shift = CashShift.objects.create(
                terminal=terminal,
                operator=operator,
                opened_at=now,
                opening_float=opening_float,
                expected_cash=opening_float,
                template_code=template.code,
                template_name=template.name,
                scheduled_start=template.start,
                scheduled_end=template.end,
                opened_early=early_minutes > 0,
                early_minutes=early_minutes,
                early_reason=confirm_early.reason if confirm_early else "",
                early_note=confirm_early.note if confirm_early else "",
            )
            ShiftDenomination.objects.bulk_create(
                [ShiftDenomination(shift=shift, denom_value=value, qty=qty) for value, qty in breakdown.items()]
            )
    except IntegrityError as exc:
        logger.info("shift_open_rejected", extra={"terminal": terminal.code, "code": ShiftAlreadyOpen.default_code})
        raise ShiftAlreadyOpen(terminal=terminal.code) from exc

    Terminal.objects.filter(pk=terminal.pk).update(last_seen_at=now)

    emit(
        "shift.opened",
        operator,
        {
            "opening_float": opening_float,
            "denominations": {str(value): qty for value, qty in breakdown.items()},
            "template": template.code,
            "opened_early": shift.opened_early,
            "early_minutes": early_minutes,
            "early_reason": shift.early_reason,
        },
        entity="shift",
        entity_id=shift.id,
        terminal=terminal,
        request=request,
    )
    logger.info("shift_opened", extra={"terminal": terminal.code, "shift_id": str(shift.id)})
    return OpenShiftResult(shift=shift)


@translate_storage_errors
def record_cash_move(*, shift_id, type, amount, recorded_by, note="", event_id=None, request=None):
    """Append a cash-in or cash-out and fold it into the running expected cash.

    Returns `(move, created)`. A retried `event_id` gives back the move that was
    already recorded without counting it twice.
    """
    if type == CashMove.Type.CASH_IN:
        total_field, sign = "cash_in_total", 1
    elif type == CashMove.Type.CASH_OUT:
        total_field, sign = "cash_out_total", -1
    else:
        raise InvalidCashMoveType(shift_id=shift_id, type=type, types=list(CashMove.Type.values))

    shift = CashShift.objects.select_related("terminal").filter(pk=shift_id).first()
    if shift is None:
        raise ShiftNotOpen(shift_id=shift_id)

    if event_id is not None:
        replay = CashMove.objects.filter(shift=shift, event_id=event_id).first()
        if replay is not None:
            return replay, False

    if not shift.is_open:
        raise _not_open(shift)

    if amount is None or to_money(amount) <= 0:
        raise InvalidAmount(shift_id=shift.id, amount=amount)
    amount = to_money(amount)
    delta = amount * sign

    try:
        with transaction.atomic():
            updated = CashShift.objects.filter(pk=shift.pk, status=CashShift.Status.OPEN).update(
                **{total_field: F(total_field) + amount},
                expected_cash=F("expected_cash") + delta,
            )
            if not updated:
                shift.refresh_from_db(fields=["status", "closed_at"])
                raise _not_open(shift)
            move = CashMove.objects.create(
                shift=shift,
                type=type,
                amount=amount,
                note=note or "",
                recorded_by=recorded_by,
                event_id=event_id,
            )
    except IntegrityError:
        if event_id is None:
            raise
        return CashMove.objects.get(shift=shift, event_id=event_id), False

    shift.refresh_from_db(fields=["expected_cash", "cash_in_total", "cash_out_total"])
    emit(
        "shift.cash_move.recorded",
        recorded_by,
        {
            "type": move.type,
            "amount": move.amount,
            "note": move.note,
            "sequence": move.id,
            "expected_cash": shift.expected_cash,
        },
        entity="shift",
        entity_id=shift.id,
        terminal=shift.terminal,
        event_id=event_id,
        request=request,
    )
    logger.info(
        "cash_move_recorded",
        extra={"terminal": shift.terminal.code, "shift_id": str(shift.id), "action": move.type},
    )
    return move, True


def _remark_amount(value):
    value = abs(to_money(value))
    if value == value.to_integral_value():
        return f"{value:.0f}"
    return f"{value:.2f}"


def default_closing_remark(variance):
    if variance > 0:
        return f"Over by {_remark_amount(variance)}"
    if variance < 0:
        return f"Short by {_remark_amount(variance)}"
    return "Balanced"


@translate_storage_errors
def close_shift(*, shift_id, declared_cash, closed_by, closing_note="", cart_item_count=0, now=None, request=None):
    now = now or timezone.now()
    sales_ledger = get_sales_ledger()

    with transaction.atomic():
        shift = CashShift.objects.select_for_update(of=("self",)).select_related("terminal").filter(pk=shift_id).first()
        if shift is None:
            raise ShiftNotOpen(shift_id=shift_id)
        if not shift.is_open:
            raise _not_open(shift)

        if declared_cash is None:
            raise InvalidAmount("Declared cash is required to close a shift.", shift_id=shift.id, field="declared_cash")
        declared = to_money(declared_cash)
        if declared < 0:
            raise InvalidAmount("Declared cash cannot be negative.", shift_id=shift.id, declared_cash=declared)

        if cart_item_count:
            raise ShiftHasPendingWork(
                "Cannot close shift while the cart has items.",
                shift_id=shift.id,
                reason="cart_items",
                cart_item_count=cart_item_count,
            )
        if sales_ledger.has_pending_orders(shift):
            raise ShiftHasPendingWork(
                "Cannot close shift while there are pending orders.",
                shift_id=shift.id,
                reason="pending_orders",
            )

        net_sales = to_money(sales_ledger.net_cash_sales(shift))
        net_refunds = to_money(sales_ledger.net_cash_refunds(shift))
        expected = to_money(shift.expected_cash + net_sales - net_refunds)
        variance = declared - expected
        note = (closing_note or "").strip() or default_closing_remark(variance)

        updated = CashShift.objects.filter(pk=shift.pk, status=CashShift.Status.OPEN).update(
            status=CashShift.Status.CLOSED,
            closed_at=now,
            closed_by=closed_by,
            net_cash_sales=net_sales,
            net_cash_refunds=net_refunds,
            expected_cash=expected,
            declared_cash=declared,
            variance_cash=variance,
            closing_note=note,
        )
        if not updated:
            raise ShiftAlreadyClosed(shift_id=shift.id)

    shift.refresh_from_db()
    emit(
        "shift.closed",
        closed_by,
        {
            "opening_float": shift.opening_float,
            "cash_in_total": shift.cash_in_total,
            "cash_out_total": shift.cash_out_total,
            "net_cash_sales": net_sales,
            "net_cash_refunds": net_refunds,
            "expected_cash": expected,
            "declared_cash": declared,
            "variance_cash": variance,
            "closing_note": note,
        },
        entity="shift",
        entity_id=shift.id,
        terminal=shift.terminal,
        request=request,
    )
    logger.info("shift_closed", extra={"terminal": shift.terminal.code, "shift_id": str(shift.id)})
    return shift


@translate_storage_errors
def get_shift_summary(shift):
    """Cash-drawer components for a shift. Open shifts ask the sales ledger for live totals."""
    if shift.is_open:
        sales_ledger = get_sales_ledger()
        net_sales = to_money(sales_ledger.net_cash_sales(shift))
        net_refunds = to_money(sales_ledger.net_cash_refunds(shift))
        expected = to_money(shift.expected_cash + net_sales - net_refunds)
    else:
        net_sales = shift.net_cash_sales or Decimal("0.00")
        net_refunds = shift.net_cash_refunds or Decimal("0.00")
        expected = shift.expected_cash

    return {
        "shift_id": shift.id,
        "terminal": shift.terminal.code,
        "status": shift.status,
        "opened_at": shift.opened_at,
        "closed_at": shift.closed_at,
        "opening_float": shift.opening_float,
        "cash_in_total": shift.cash_in_total,
        "cash_out_total": shift.cash_out_total,
        "net_cash_sales": net_sales,
        "net_cash_refunds": net_refunds,
        "expected_cash": expected,
        "declared_cash": shift.declared_cash,
        "variance_cash": shift.variance_cash,
        "closing_note": shift.closing_note,
        "cash_move_count": shift.cash_moves.count(),
    }
