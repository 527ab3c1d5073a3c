import uuid
from datetime import datetime, time, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ImproperlyConfigured
from django.db import OperationalError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import StoreUnavailable
from core.models import AuditLog, Terminal
from pins import services as pin_services
from pins.exceptions import InvalidPin
from shifts import services
from shifts.denominations import DenominationLedger, counts_from_rows
from shifts.exceptions import (
    InvalidAmount,
    InvalidCashMoveType,
    InvalidDenomination,
    InvalidOpeningFloat,
    ShiftAlreadyClosed,
    ShiftAlreadyOpen,
    ShiftHasPendingWork,
    ShiftNotOpen,
)
from shifts.ledger import NullSalesLedger, SalesLedger, get_sales_ledger
from shifts.models import CashMove, CashShift
from shifts.schedule import MatchKind, ShiftTemplate, ShiftTemplateResolver

FAST_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

SHIFT_SETTINGS = {
    "PASSWORD_HASHERS": FAST_HASHERS,
    "TIME_ZONE": "UTC",
    "SHIFT_DENOMINATIONS": [1, 5, 10, 20, 50, 100, 200, 500, 1000],
    "SHIFT_MIN_OPENING_FLOAT": Decimal("1000.00"),
    "SHIFT_MAX_OPENING_FLOAT": Decimal("500000.00"),
    "SHIFT_TEMPLATES": [
        {"code": "SHIFT_1", "name": "First Shift", "start": "08:00", "end": "15:00"},
        {"code": "SHIFT_2", "name": "Second Shift", "start": "15:00", "end": "22:00"},
    ],
    "SHIFT_EARLY_OPEN_TOLERANCE_MINUTES": 60,
    "SHIFT_EARLY_OPEN_REQUIRES_PIN": False,
    "SHIFT_SALES_LEDGER": "shifts.ledger.NullSalesLedger",
}


def at(hour, minute=0):
    return datetime(2026, 3, 2, hour, minute, tzinfo=dt_timezone.utc)


class FixedSalesLedger(NullSalesLedger):
    def net_cash_sales(self, shift):
        return Decimal("300.00")

    def net_cash_refunds(self, shift):
        return Decimal("20.00")


class PendingOrdersLedger(NullSalesLedger):
    def has_pending_orders(self, shift):
        return True


class SalesOnlyLedger(SalesLedger):
    def net_cash_sales(self, shift):
        return Decimal("0.00")


class DenominationLedgerTests(SimpleTestCase):
    def setUp(self):
        self.ledger = DenominationLedger(
            denominations=(1, 5, 10, 20, 50, 100, 200, 500, 1000),
            minimum_opening_float=Decimal("1000.00"),
            maximum_opening_float=Decimal("500000.00"),
        )

    def test_total_sums_face_times_count(self):
        self.assertEqual(self.ledger.total({500: 2, 200: 2, 100: 1}), Decimal("1500.00"))

    def test_normalize_fills_every_legal_face_value(self):
        breakdown = self.ledger.normalize({100: 3})

        self.assertEqual(list(breakdown), [1, 5, 10, 20, 50, 100, 200, 500, 1000])
        self.assertEqual(breakdown[100], 3)
        self.assertEqual(breakdown[500], 0)

    def test_unknown_face_value_is_rejected_with_details(self):
        with self.assertRaises(InvalidDenomination) as ctx:
            self.ledger.total({3: 1})

        self.assertEqual(ctx.exception.details["denomination"], 3)
        self.assertIn(500, ctx.exception.details["accepted"])

    def test_negative_count_is_rejected(self):
        with self.assertRaises(InvalidDenomination):
            self.ledger.total({100: -1})

    def test_opening_total_boundaries(self):
        self.ledger.validate_opening_total(Decimal("1000.00"))
        self.ledger.validate_opening_total(Decimal("500000.00"))

        with self.assertRaises(InvalidOpeningFloat) as below:
            self.ledger.validate_opening_total(Decimal("999.99"))
        with self.assertRaises(InvalidOpeningFloat) as above:
            self.ledger.validate_opening_total(Decimal("500000.01"))

        self.assertEqual(below.exception.details["reason"], InvalidOpeningFloat.BELOW_MINIMUM)
        self.assertEqual(below.exception.details["minimum"], Decimal("1000.00"))
        self.assertEqual(above.exception.details["reason"], InvalidOpeningFloat.ABOVE_MAXIMUM)

    def test_rows_with_repeated_face_value_are_rejected(self):
        with self.assertRaises(InvalidDenomination):
            counts_from_rows([{"denom_value": 100, "qty": 1}, {"denom_value": 100, "qty": 2}])


@override_settings(TIME_ZONE="UTC")
class ShiftTemplateResolverTests(SimpleTestCase):
    def setUp(self):
        self.first = ShiftTemplate("SHIFT_1", "First Shift", time(8, 0), time(15, 0))
        self.second = ShiftTemplate("SHIFT_2", "Second Shift", time(15, 0), time(22, 0))
        self.resolver = ShiftTemplateResolver([self.second, self.first], early_open_tolerance_minutes=60)

    def test_inside_window(self):
        match = self.resolver.resolve(at(9, 15))

        self.assertEqual(match.template, self.first)
        self.assertEqual(match.kind, MatchKind.INSIDE)
        self.assertEqual(self.resolver.early_minutes(match.template, at(9, 15)), 0)

    def test_window_end_belongs_to_next_window(self):
        self.assertEqual(self.resolver.resolve(at(15, 0)).template, self.second)

    def test_before_first_window_is_upcoming_and_early(self):
        match = self.resolver.resolve(at(6, 30))
        early_minutes = self.resolver.early_minutes(match.template, at(6, 30))

        self.assertEqual(match.template, self.first)
        self.assertEqual(match.kind, MatchKind.UPCOMING)
        self.assertEqual(early_minutes, 90)
        self.assertTrue(self.resolver.requires_confirmation(early_minutes))

    def test_within_tolerance_needs_no_confirmation(self):
        early_minutes = self.resolver.early_minutes(self.first, at(7, 30))

        self.assertEqual(early_minutes, 30)
        self.assertFalse(self.resolver.requires_confirmation(early_minutes))
        self.assertFalse(self.resolver.requires_confirmation(60))

    def test_after_last_window_falls_back_to_latest(self):
        match = self.resolver.resolve(at(23, 0))

        self.assertEqual(match.template, self.second)
        self.assertEqual(match.kind, MatchKind.LATEST)
        self.assertEqual(self.resolver.early_minutes(match.template, at(23, 0)), 0)

    def test_overnight_window_wraps_midnight(self):
        night = ShiftTemplate("NIGHT", "Night Shift", time(22, 0), time(6, 0))
        resolver = ShiftTemplateResolver([self.first, night], early_open_tolerance_minutes=60)

        self.assertEqual(resolver.resolve(at(23, 30)).template, night)
        self.assertEqual(resolver.resolve(at(2, 0)).kind, MatchKind.INSIDE)
        self.assertEqual(resolver.resolve(at(7, 0)).template, self.first)


class SalesLedgerTests(SimpleTestCase):
    @override_settings(SHIFT_SALES_LEDGER="shifts.tests.FixedSalesLedger")
    def test_configured_ledger_is_loaded(self):
        self.assertIsInstance(get_sales_ledger(), FixedSalesLedger)

    @override_settings(SHIFT_SALES_LEDGER="shifts.tests.SalesOnlyLedger")
    def test_incomplete_ledger_fails_when_loaded(self):
        with self.assertRaises(TypeError):
            get_sales_ledger()

    @override_settings(SHIFT_SALES_LEDGER="shifts.models.CashShift")
    def test_non_ledger_class_is_rejected(self):
        with self.assertRaises(ImproperlyConfigured):
            get_sales_ledger()


class ShiftFixturesMixin:
    def setUp(self):
        user_model = get_user_model()
        self.operator = user_model.objects.create_user(username="cashier-shift", password="pass1234", role="cashier")
        self.other_cashier = user_model.objects.create_user(username="cashier-other", password="pass1234", role="cashier")
        self.supervisor = user_model.objects.create_user(username="supervisor-shift", password="pass1234", role="supervisor")
        self.terminal = Terminal.objects.create(code="TERMINAL-1", name="Front Counter")
        self.terminal_b = Terminal.objects.create(code="TERMINAL-2", name="Patio")

    def _open(self, terminal=None, counts=None, now=None, **kwargs):
        return services.open_shift(
            terminal=terminal or self.terminal,
            operator=kwargs.pop("operator", self.operator),
            denominations=counts if counts is not None else {500: 3},
            now=now or at(9, 0),
            **kwargs,
        )

    def _move(self, shift, type, amount, **kwargs):
        return services.record_cash_move(
            shift_id=shift.id,
            type=type,
            amount=Decimal(amount),
            recorded_by=kwargs.pop("recorded_by", self.operator),
            **kwargs,
        )


@override_settings(**SHIFT_SETTINGS)
class ShiftLifecycleTests(ShiftFixturesMixin, TestCase):
    def test_open_move_close_scenario(self):
        shift = self._open().shift
        self.assertEqual(shift.opening_float, Decimal("1500.00"))

        self._move(shift, CashMove.Type.CASH_IN, "200")
        self._move(shift, CashMove.Type.CASH_IN, "200")
        self._move(shift, CashMove.Type.CASH_OUT, "50")
        shift.refresh_from_db()
        self.assertEqual(shift.expected_cash, Decimal("1850.00"))

        closed = services.close_shift(shift_id=shift.id, declared_cash=Decimal("1800"), closed_by=self.operator)

        self.assertEqual(closed.status, CashShift.Status.CLOSED)
        self.assertEqual(closed.variance_cash, Decimal("-50.00"))
        self.assertEqual(closed.closing_note, "Short by 50")
        self.assertEqual(closed.declared_cash, Decimal("1800.00"))
        self.assertIsNotNone(closed.closed_at)

    def test_open_persists_denomination_breakdown_and_template(self):
        shift = self._open(counts={500: 2, 100: 5}).shift

        breakdown = {row.denom_value: row.qty for row in shift.opening_denominations.all()}
        self.assertEqual(len(breakdown), 9)
        self.assertEqual(breakdown[500], 2)
        self.assertEqual(breakdown[1000], 0)
        self.assertEqual(shift.template_code, "SHIFT_1")
        self.assertFalse(shift.opened_early)

    def test_second_open_on_terminal_is_rejected(self):
        first = self._open().shift

        with self.assertRaises(ShiftAlreadyOpen) as ctx:
            self._open(operator=self.other_cashier)

        self.assertEqual(ctx.exception.details["shift_id"], first.id)
        self.assertEqual(CashShift.objects.filter(terminal=self.terminal, status=CashShift.Status.OPEN).count(), 1)

    def test_losing_concurrent_open_observes_already_open(self):
        self._open()

        # The loser's pre-read saw no shift; the store constraint still rejects it.
        with patch("shifts.services.get_open_shift", return_value=None):
            with self.assertRaises(ShiftAlreadyOpen):
                self._open(operator=self.other_cashier)

        self.assertEqual(CashShift.objects.filter(terminal=self.terminal).count(), 1)

    def test_already_open_wins_over_invalid_float(self):
        self._open()

        with self.assertRaises(ShiftAlreadyOpen):
            self._open(counts={1: 1})

    def test_terminals_are_independent_and_reopen_after_close(self):
        shift = self._open().shift
        self._open(terminal=self.terminal_b)
        services.close_shift(shift_id=shift.id, declared_cash=Decimal("1500"), closed_by=self.operator)

        reopened = self._open().shift

        self.assertNotEqual(reopened.id, shift.id)
        self.assertEqual(services.get_open_shift(self.terminal).id, reopened.id)
        self.assertEqual(services.get_open_shift("TERMINAL-2").terminal_id, self.terminal_b.id)

    def test_opening_float_boundaries(self):
        with self.assertRaises(InvalidOpeningFloat):
            self._open(counts={500: 1, 200: 2, 50: 1, 20: 2, 5: 1, 1: 4})
        self.assertFalse(CashShift.objects.exists())

        self.assertEqual(self._open(counts={500: 2}).shift.opening_float, Decimal("1000.00"))
        self.assertEqual(self._open(terminal=self.terminal_b, counts={1000: 500}).shift.opening_float, Decimal("500000.00"))

    def test_opening_float_above_maximum(self):
        with self.assertRaises(InvalidOpeningFloat) as ctx:
            self._open(counts={1000: 500, 1: 1})

        self.assertEqual(ctx.exception.details["reason"], InvalidOpeningFloat.ABOVE_MAXIMUM)

    def test_early_open_requires_confirmation(self):
        result = self._open(now=at(6, 30))

        self.assertTrue(result.confirmation_required)
        self.assertIsNone(result.shift)
        self.assertEqual(result.confirmation.early_minutes, 90)
        self.assertEqual(result.confirmation.template.code, "SHIFT_1")
        self.assertFalse(CashShift.objects.exists())

    def test_confirmed_early_open_records_reason(self):
        result = self._open(
            now=at(6, 30),
            confirm_early=services.EarlyOpenConfirmation(reason="stock delivery"),
        )

        self.assertFalse(result.confirmation_required)
        self.assertTrue(result.shift.opened_early)
        self.assertEqual(result.shift.early_minutes, 90)
        self.assertEqual(result.shift.early_reason, "stock delivery")

    def test_early_within_tolerance_opens_without_confirmation(self):
        shift = self._open(now=at(7, 30)).shift

        self.assertTrue(shift.opened_early)
        self.assertEqual(shift.early_minutes, 30)
        self.assertEqual(shift.early_reason, "")

    @override_settings(SHIFT_EARLY_OPEN_REQUIRES_PIN=True)
    def test_early_open_pin_is_verified_when_policy_requires_it(self):
        pin_services.set_or_rotate(mode=pin_services.RotationMode.SET, new_pin="2468")

        with self.assertRaises(InvalidPin):
            self._open(now=at(6, 30), confirm_early=services.EarlyOpenConfirmation(reason="delivery", pin="1111"))
        self.assertFalse(CashShift.objects.exists())

        result = self._open(now=at(6, 30), confirm_early=services.EarlyOpenConfirmation(reason="delivery", pin="2468"))

        self.assertTrue(result.shift.opened_early)
        attempts = AuditLog.objects.filter(action="authorization_pin.verified")
        self.assertEqual(sorted(log.detail["success"] for log in attempts), [False, True])

    def test_cash_move_amount_must_be_positive(self):
        shift = self._open().shift

        with self.assertRaises(InvalidAmount):
            self._move(shift, CashMove.Type.CASH_IN, "0")
        with self.assertRaises(InvalidAmount):
            self._move(shift, CashMove.Type.CASH_OUT, "-5")

        self.assertFalse(shift.cash_moves.exists())

    def test_cash_move_on_unknown_shift_is_not_open(self):
        with self.assertRaises(ShiftNotOpen):
            services.record_cash_move(
                shift_id=uuid.uuid4(),
                type=CashMove.Type.CASH_IN,
                amount=Decimal("10"),
                recorded_by=self.operator,
            )

    def test_cash_move_on_closed_shift_is_rejected(self):
        shift = self._open().shift
        services.close_shift(shift_id=shift.id, declared_cash=Decimal("1500"), closed_by=self.operator)

        with self.assertRaises(ShiftAlreadyClosed):
            self._move(shift, CashMove.Type.CASH_IN, "10")

    def test_cash_moves_are_commutative_and_keep_arrival_order(self):
        shift_a = self._open().shift
        shift_b = self._open(terminal=self.terminal_b).shift

        for kind, amount in [(CashMove.Type.CASH_IN, "200"), (CashMove.Type.CASH_OUT, "75.25"), (CashMove.Type.CASH_IN, "40")]:
            self._move(shift_a, kind, amount)
        for kind, amount in [(CashMove.Type.CASH_IN, "40"), (CashMove.Type.CASH_IN, "200"), (CashMove.Type.CASH_OUT, "75.25")]:
            self._move(shift_b, kind, amount)

        shift_a.refresh_from_db()
        shift_b.refresh_from_db()
        self.assertEqual(shift_a.expected_cash, shift_b.expected_cash)
        self.assertEqual(shift_a.expected_cash, Decimal("1664.75"))
        self.assertEqual(
            [move.amount for move in shift_b.cash_moves.all()],
            [Decimal("40.00"), Decimal("200.00"), Decimal("75.25")],
        )

    def test_cash_move_retry_with_event_id_counts_once(self):
        shift = self._open().shift
        event_id = uuid.uuid4()

        first, created = self._move(shift, CashMove.Type.CASH_IN, "200", event_id=event_id)
        replay, replay_created = self._move(shift, CashMove.Type.CASH_IN, "200", event_id=event_id)

        self.assertTrue(created)
        self.assertFalse(replay_created)
        self.assertEqual(first.id, replay.id)
        shift.refresh_from_db()
        self.assertEqual(shift.expected_cash, Decimal("1700.00"))
        self.assertEqual(shift.cash_moves.count(), 1)

    def test_close_twice_reports_already_closed(self):
        shift = self._open().shift
        services.close_shift(shift_id=shift.id, declared_cash=Decimal("1500"), closed_by=self.operator)

        with self.assertRaises(ShiftAlreadyClosed):
            services.close_shift(shift_id=shift.id, declared_cash=Decimal("1500"), closed_by=self.operator)

    def test_losing_concurrent_close_observes_already_closed(self):
        shift = self._open().shift
        stale = CashShift.objects.select_related("terminal").get(pk=shift.id)
        services.close_shift(shift_id=shift.id, declared_cash=Decimal("1500"), closed_by=self.operator)

        # The loser read the row while it was still open; only the conditional update can stop it.
        with patch("shifts.services.CashShift.objects.select_for_update") as locked:
            locked.return_value.select_related.return_value.filter.return_value.first.return_value = stale
            with self.assertRaises(ShiftAlreadyClosed):
                services.close_shift(shift_id=shift.id, declared_cash=Decimal("1800"), closed_by=self.supervisor)

        shift.refresh_from_db()
        self.assertEqual(shift.declared_cash, Decimal("1500.00"))
        self.assertEqual(shift.variance_cash, Decimal("0.00"))
        self.assertEqual(shift.closed_by, self.operator)
        self.assertEqual(AuditLog.objects.filter(action="shift.closed", entity_id=shift.id).count(), 1)

    def test_unknown_cash_move_type_is_rejected(self):
        shift = self._open().shift

        with self.assertRaises(InvalidCashMoveType) as ctx:
            self._move(shift, "refund", "100", event_id=uuid.uuid4())

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.details["type"], "refund")
        shift.refresh_from_db()
        self.assertEqual(shift.expected_cash, Decimal("1500.00"))
        self.assertEqual(shift.cash_out_total, Decimal("0.00"))
        self.assertFalse(shift.cash_moves.exists())
        self.assertFalse(AuditLog.objects.filter(action="shift.cash_move.recorded").exists())

    def test_close_unknown_shift_is_not_open(self):
        with self.assertRaises(ShiftNotOpen):
            services.close_shift(shift_id=uuid.uuid4(), declared_cash=Decimal("1"), closed_by=self.operator)

    def test_close_remarks(self):
        balanced = self._open().shift
        over = self._open(terminal=self.terminal_b).shift

        balanced = services.close_shift(shift_id=balanced.id, declared_cash=Decimal("1500.00"), closed_by=self.operator)
        over = services.close_shift(shift_id=over.id, declared_cash=Decimal("1525.50"), closed_by=self.operator)

        self.assertEqual(balanced.variance_cash, Decimal("0.00"))
        self.assertEqual(balanced.closing_note, "Balanced")
        self.assertEqual(over.closing_note, "Over by 25.50")

    def test_close_keeps_operator_note(self):
        shift = self._open().shift

        closed = services.close_shift(
            shift_id=shift.id,
            declared_cash=Decimal("1490"),
            closing_note="  Coin roll missing  ",
            closed_by=self.operator,
        )

        self.assertEqual(closed.closing_note, "Coin roll missing")
        self.assertEqual(closed.variance_cash, Decimal("-10.00"))

    def test_close_requires_declared_cash(self):
        shift = self._open().shift

        with self.assertRaises(InvalidAmount):
            services.close_shift(shift_id=shift.id, declared_cash=None, closed_by=self.operator)

        shift.refresh_from_db()
        self.assertTrue(shift.is_open)

    @override_settings(SHIFT_SALES_LEDGER="shifts.tests.FixedSalesLedger")
    def test_expected_cash_includes_net_cash_sales_and_refunds(self):
        shift = self._open().shift
        self._move(shift, CashMove.Type.CASH_OUT, "50")

        closed = services.close_shift(shift_id=shift.id, declared_cash=Decimal("1730"), closed_by=self.operator)

        self.assertEqual(closed.net_cash_sales, Decimal("300.00"))
        self.assertEqual(closed.net_cash_refunds, Decimal("20.00"))
        self.assertEqual(closed.expected_cash, Decimal("1730.00"))
        self.assertEqual(closed.closing_note, "Balanced")

    @override_settings(SHIFT_SALES_LEDGER="shifts.tests.PendingOrdersLedger")
    def test_close_blocked_by_pending_orders(self):
        shift = self._open().shift

        with self.assertRaises(ShiftHasPendingWork) as ctx:
            services.close_shift(shift_id=shift.id, declared_cash=Decimal("1500"), closed_by=self.operator)

        self.assertEqual(ctx.exception.details["reason"], "pending_orders")

    def test_close_blocked_by_cart_items(self):
        shift = self._open().shift

        with self.assertRaises(ShiftHasPendingWork):
            services.close_shift(shift_id=shift.id, declared_cash=Decimal("1500"), cart_item_count=2, closed_by=self.operator)

        shift.refresh_from_db()
        self.assertTrue(shift.is_open)

    def test_transitions_are_audited(self):
        shift = self._open().shift
        self._move(shift, CashMove.Type.CASH_IN, "10")
        services.close_shift(shift_id=shift.id, declared_cash=Decimal("1500"), closed_by=self.operator)

        actions = set(AuditLog.objects.filter(entity="shift", entity_id=shift.id).values_list("action", flat=True))
        self.assertEqual(actions, {"shift.opened", "shift.cash_move.recorded", "shift.closed"})
        closed_log = AuditLog.objects.get(action="shift.closed", entity_id=shift.id)
        self.assertEqual(closed_log.detail["variance_cash"], "-10.00")
        self.assertEqual(closed_log.terminal_id, self.terminal.id)

    def test_audit_failure_never_blocks_transition(self):
        with patch("common.audit.create_audit_log", side_effect=RuntimeError("log store down")):
            with self.assertLogs("common.audit", level="ERROR") as logs:
                result = self._open()
                services.close_shift(shift_id=result.shift.id, declared_cash=Decimal("1500"), closed_by=self.operator)

        self.assertFalse(AuditLog.objects.exists())
        self.assertEqual(CashShift.objects.get(pk=result.shift.id).status, CashShift.Status.CLOSED)
        self.assertTrue(any("audit_emit_failed" in message for message in logs.output))

    def test_storage_timeout_surfaces_as_unavailable(self):
        with patch("shifts.services.get_open_shift", side_effect=OperationalError("canceling statement due to lock timeout")):
            with self.assertRaises(StoreUnavailable) as ctx:
                self._open()

        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(ctx.exception.code, "unavailable")

    def test_summary_storage_timeout_surfaces_as_unavailable(self):
        shift = self._open().shift

        with patch("shifts.services.get_sales_ledger", side_effect=OperationalError("canceling statement due to statement timeout")):
            with self.assertRaises(StoreUnavailable):
                services.get_shift_summary(shift)

    def test_summary_of_open_and_closed_shift(self):
        shift = self._open().shift
        self._move(shift, CashMove.Type.CASH_IN, "100")
        shift.refresh_from_db()

        live = services.get_shift_summary(shift)
        self.assertEqual(live["expected_cash"], Decimal("1600.00"))
        self.assertIsNone(live["variance_cash"])
        self.assertEqual(live["cash_move_count"], 1)

        closed = services.close_shift(shift_id=shift.id, declared_cash=Decimal("1590"), closed_by=self.operator)
        final = services.get_shift_summary(closed)
        self.assertEqual(final["variance_cash"], Decimal("-10.00"))
        self.assertEqual(final["net_cash_sales"], Decimal("0.00"))


@override_settings(**SHIFT_SETTINGS)
class ShiftApiTests(ShiftFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.operator)

    def _post_open(self, now=None, **extra):
        payload = {
            "terminal": "TERMINAL-1",
            "denominations": [{"denom_value": 500, "qty": 2}, {"denom_value": 100, "qty": 5}],
            **extra,
        }
        with patch("shifts.services.timezone.now", return_value=now or at(9, 0)):
            return self.client.post("/api/v1/shifts/open/", payload, format="json")

    def test_open_returns_created_shift(self):
        response = self._post_open()

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], "open")
        self.assertEqual(body["opening_float"], "1500.00")
        self.assertEqual(body["terminal_code"], "TERMINAL-1")
        self.assertEqual(body["scheduled_template"], {"code": "SHIFT_1", "name": "First Shift", "start": "08:00", "end": "15:00"})
        self.assertEqual(len(body["opening_denominations"]), 9)

    def test_early_open_is_a_two_step_exchange(self):
        first = self._post_open(now=at(6, 30))

        self.assertEqual(first.status_code, 428)
        envelope = first.json()
        self.assertEqual(envelope["code"], "early_open_confirmation_required")
        self.assertEqual(envelope["errors"]["early_minutes"], 90)
        self.assertEqual(envelope["errors"]["template"]["code"], "SHIFT_1")
        self.assertFalse(CashShift.objects.exists())

        second = self._post_open(now=at(6, 30), confirm_early={"reason": "stock delivery", "note": "truck at 7"})

        self.assertEqual(second.status_code, 201)
        self.assertTrue(second.json()["opened_early"])
        self.assertEqual(second.json()["early_minutes"], 90)

    def test_second_open_conflicts(self):
        self._post_open()

        response = self._post_open()

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "shift_already_open")

    def test_invalid_denomination_is_reported(self):
        response = self.client.post(
            "/api/v1/shifts/open/",
            {"terminal": "TERMINAL-1", "denominations": [{"denom_value": 3, "qty": 400}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_denomination")
        self.assertEqual(response.json()["errors"]["denomination"], 3)

    def test_low_opening_float_is_reported(self):
        response = self.client.post(
            "/api/v1/shifts/open/",
            {"terminal": "TERMINAL-1", "denominations": [{"denom_value": 100, "qty": 9}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "invalid_opening_float")
        self.assertEqual(body["errors"]["reason"], "below_minimum")
        self.assertEqual(body["errors"]["minimum"], "1000.00")

    def test_unknown_terminal_is_rejected(self):
        response = self.client.post(
            "/api/v1/shifts/open/",
            {"terminal": "NOPE", "denominations": [{"denom_value": 500, "qty": 3}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_current_shift_by_query_or_header(self):
        missing = self.client.get("/api/v1/shifts/current/", {"terminal": "TERMINAL-1"})
        self.assertEqual(missing.status_code, 404)

        opened = self._post_open().json()

        by_query = self.client.get("/api/v1/shifts/current/", {"terminal": "TERMINAL-1"})
        by_header = self.client.get("/api/v1/shifts/current/", HTTP_X_TERMINAL_ID="TERMINAL-1")
        self.assertEqual(by_query.json()["id"], opened["id"])
        self.assertEqual(by_header.json()["id"], opened["id"])

    def test_cash_moves_create_replay_and_list(self):
        shift_id = self._post_open().json()["id"]
        url = f"/api/v1/shifts/{shift_id}/cash-moves/"
        event_id = str(uuid.uuid4())

        created = self.client.post(url, {"type": "cash_in", "amount": "200.00", "event_id": event_id}, format="json")
        replay = self.client.post(url, {"type": "cash_in", "amount": "200.00", "event_id": event_id}, format="json")
        self.client.post(url, {"type": "cash_out", "amount": "50.00", "note": "petty cash"}, format="json")
        listing = self.client.get(url)

        self.assertEqual(created.status_code, 201)
        self.assertEqual(replay.status_code, 200)
        self.assertEqual(replay.json()["sequence"], created.json()["sequence"])
        sequences = [row["sequence"] for row in listing.json()]
        self.assertEqual(sequences, sorted(sequences))
        self.assertEqual([row["type"] for row in listing.json()], ["cash_in", "cash_out"])

    def test_cash_move_with_zero_amount(self):
        shift_id = self._post_open().json()["id"]

        response = self.client.post(f"/api/v1/shifts/{shift_id}/cash-moves/", {"type": "cash_in", "amount": "0"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_amount")

    def test_close_scenario_and_second_close(self):
        shift_id = self._post_open().json()["id"]
        for payload in ({"type": "cash_in", "amount": "200"}, {"type": "cash_in", "amount": "200"}, {"type": "cash_out", "amount": "50"}):
            self.client.post(f"/api/v1/shifts/{shift_id}/cash-moves/", payload, format="json")

        first = self.client.post(f"/api/v1/shifts/{shift_id}/close/", {"declared_cash": "1800.00"}, format="json")
        second = self.client.post(f"/api/v1/shifts/{shift_id}/close/", {"declared_cash": "1800.00"}, format="json")

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["expected_cash"], "1850.00")
        self.assertEqual(first.json()["variance_cash"], "-50.00")
        self.assertEqual(first.json()["closing_note"], "Short by 50")
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["code"], "shift_already_closed")

    def test_close_without_declared_cash_is_validation_error(self):
        shift_id = self._post_open().json()["id"]

        response = self.client.post(f"/api/v1/shifts/{shift_id}/close/", {}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("declared_cash", response.json()["errors"])

    def test_closing_another_operators_shift_needs_override(self):
        shift_id = self._post_open().json()["id"]

        self.client.force_authenticate(user=self.other_cashier)
        with self.assertLogs("security.authorization", level="WARNING"):
            denied = self.client.post(f"/api/v1/shifts/{shift_id}/close/", {"declared_cash": "1500"}, format="json")

        self.client.force_authenticate(user=self.supervisor)
        allowed = self.client.post(f"/api/v1/shifts/{shift_id}/close/", {"declared_cash": "1500"}, format="json")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(allowed.status_code, 200)
        self.assertEqual(CashShift.objects.get(pk=shift_id).closed_by_id, self.supervisor.id)

    def test_summary_and_history(self):
        shift_id = self._post_open().json()["id"]
        self.client.post(f"/api/v1/shifts/{shift_id}/cash-moves/", {"type": "cash_in", "amount": "25"}, format="json")

        summary = self.client.get(f"/api/v1/shifts/{shift_id}/summary/")
        history = self.client.get("/api/v1/shifts/", {"status": "open", "terminal": "TERMINAL-1"})
        detail = self.client.get(f"/api/v1/shifts/{shift_id}/")

        self.assertEqual(summary.status_code, 200)
        self.assertEqual(summary.json()["expected_cash"], "1525.00")
        self.assertEqual(history.json()["count"], 1)
        self.assertEqual(detail.json()["cash_in_total"], "25.00")

    def test_templates_suggestion(self):
        with patch("shifts.views.timezone.now", return_value=at(6, 30)):
            response = self.client.get("/api/v1/shifts/templates/")

        body = response.json()
        self.assertEqual([template["code"] for template in body["templates"]], ["SHIFT_1", "SHIFT_2"])
        self.assertEqual(body["suggested"]["code"], "SHIFT_1")
        self.assertEqual(body["match"], "upcoming")
        self.assertEqual(body["early_minutes"], 90)
        self.assertTrue(body["requires_confirmation"])

    def test_store_unavailable_maps_to_503(self):
        with patch("shifts.services.CashShift.objects.select_related", side_effect=OperationalError("database is locked")):
            response = self.client.get("/api/v1/shifts/current/", {"terminal": "TERMINAL-1"})

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["code"], "unavailable")

    def test_summary_store_unavailable_maps_to_503(self):
        shift = self._open().shift

        with patch("shifts.services.get_sales_ledger", side_effect=OperationalError("database is locked")):
            response = self.client.get(f"/api/v1/shifts/{shift.id}/summary/")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["code"], "unavailable")
