from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import OperationalError
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import StoreUnavailable
from core.models import AuditLog, Terminal
from pins import services
from pins.exceptions import (
    CurrentIncorrect,
    CurrentRequired,
    InvalidPin,
    NoExistingSecret,
    NoPinConfigured,
    PatternInvalid,
    UnknownProtectedAction,
    UnknownRealm,
)
from pins.models import AuthorizationPin

FAST_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class PinGateServiceTests(TestCase):
    def setUp(self):
        self.admin = get_user_model().objects.create_user(username="pin-admin", password="pass1234", role="admin")

    def _set(self, pin="1234", **kwargs):
        return services.set_or_rotate(mode=services.RotationMode.SET, new_pin=pin, actor=self.admin, **kwargs)

    def test_verify_without_configured_pin(self):
        with self.assertRaises(NoPinConfigured):
            services.verify("order.void", "1234")

        log = AuditLog.objects.get(action="authorization_pin.verified")
        self.assertEqual(log.detail, {"protected_action": "order.void", "realm": "pos", "success": False})

    def test_verify_accepts_active_pin_and_rejects_others(self):
        self._set("1234")

        self.assertTrue(services.verify("order.refund", "1234"))
        with self.assertRaises(InvalidPin):
            services.verify("order.refund", "9999")
        with self.assertRaises(InvalidPin):
            services.verify("order.refund", "")

        outcomes = sorted(log.detail["success"] for log in AuditLog.objects.filter(action="authorization_pin.verified"))
        self.assertEqual(outcomes, [False, False, True])

    def test_verify_unknown_action(self):
        with self.assertRaises(UnknownProtectedAction):
            services.verify("menu.delete", "1234")

    def test_verify_storage_timeout_surfaces_as_unavailable(self):
        with patch("pins.services.get_active_pin", side_effect=OperationalError("canceling statement due to lock timeout")):
            with self.assertRaises(StoreUnavailable) as ctx:
                services.verify("order.void", "1234")

        self.assertEqual(ctx.exception.details, {"operation": "verify"})

    def test_set_then_reset_keeps_history(self):
        first, first_outcome = self._set("1234")
        second, second_outcome = self._set("5678")

        self.assertEqual(first_outcome, services.RotationOutcome.SET)
        self.assertEqual(second_outcome, services.RotationOutcome.RESET)
        first.refresh_from_db()
        self.assertFalse(first.is_active)
        self.assertIsNotNone(first.deactivated_at)
        self.assertTrue(second.is_active)
        self.assertNotEqual(second.pin_hash, "5678")
        with self.assertRaises(InvalidPin):
            services.verify("order.void", "1234")
        self.assertTrue(services.verify("order.void", "5678"))

    def test_change_requires_current_pin(self):
        self._set("1234")

        with self.assertRaises(CurrentRequired):
            services.set_or_rotate(mode=services.RotationMode.CHANGE, new_pin="5678")
        with self.assertRaises(CurrentIncorrect):
            services.set_or_rotate(mode=services.RotationMode.CHANGE, new_pin="5678", current_pin="0000")

        record, outcome = services.set_or_rotate(mode=services.RotationMode.CHANGE, new_pin="5678", current_pin="1234")

        self.assertEqual(outcome, services.RotationOutcome.CHANGED)
        self.assertEqual(AuthorizationPin.objects.filter(is_active=True).get().pk, record.pk)
        self.assertTrue(AuditLog.objects.filter(action="authorization_pin.changed", entity_id=record.pk).exists())

    def test_change_without_existing_secret(self):
        with self.assertRaises(NoExistingSecret):
            services.set_or_rotate(mode=services.RotationMode.CHANGE, new_pin="5678", current_pin="1234")

    def test_pattern_is_enforced(self):
        for bad_pin in ["123", "1234567", "12a4", " 1234"]:
            with self.subTest(pin=bad_pin):
                with self.assertRaises(PatternInvalid):
                    self._set(bad_pin)

        self.assertFalse(AuthorizationPin.objects.exists())
        self.assertTrue(self._set("123456")[0].is_active)

    @override_settings(AUTHORIZATION_PIN_LENGTH=(4, 4))
    def test_pattern_follows_configured_length(self):
        with self.assertRaises(PatternInvalid) as ctx:
            self._set("12345")

        self.assertEqual(ctx.exception.details, {"min_length": 4, "max_length": 4})

    def test_realms_are_isolated(self):
        self._set("1234", realm="backoffice")

        with self.assertRaises(NoPinConfigured):
            services.verify("order.void", "1234", realm="pos")
        self.assertTrue(services.verify("order.void", "1234", realm="backoffice"))

    def test_unknown_realm(self):
        with self.assertRaises(UnknownRealm):
            self._set("1234", realm="kitchen")

    def test_metadata_never_exposes_hash(self):
        self._set("1234")

        rows = services.get_pin_metadata()

        self.assertEqual(len(rows), 1)
        self.assertTrue(rows[0]["is_configured"])
        self.assertEqual(rows[0]["last_changed_by"], "pin-admin")
        self.assertIn("shift.open_early", rows[0]["protected_actions"])
        self.assertNotIn("pin_hash", rows[0])


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class PinApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.cashier = user_model.objects.create_user(username="pin-cashier", password="pass1234", role="cashier")
        self.supervisor = user_model.objects.create_user(username="pin-supervisor", password="pass1234", role="supervisor")
        self.admin = user_model.objects.create_user(username="pin-admin", password="pass1234", role="admin")
        self.terminal = Terminal.objects.create(code="TERMINAL-1", name="Front Counter")

    def test_admin_sets_and_supervisor_changes(self):
        self.client.force_authenticate(user=self.admin)
        set_res = self.client.post("/api/v1/authorization-pins/", {"mode": "set", "new_pin": "1234"}, format="json")

        self.client.force_authenticate(user=self.supervisor)
        change_res = self.client.post(
            "/api/v1/authorization-pins/",
            {"mode": "change", "current_pin": "1234", "new_pin": "4321"},
            format="json",
        )

        self.assertEqual(set_res.status_code, 201)
        self.assertEqual(set_res.json()["outcome"], "set")
        self.assertEqual(change_res.status_code, 201)
        self.assertEqual(change_res.json()["outcome"], "changed")
        self.assertNotIn("new_pin", change_res.json())

    def test_supervisor_cannot_force_set(self):
        self.client.force_authenticate(user=self.supervisor)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post("/api/v1/authorization-pins/", {"mode": "set", "new_pin": "1234"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("authorization_pin.set" in message for message in cm.output))
        self.assertFalse(AuthorizationPin.objects.exists())

    def test_cashier_cannot_view_metadata(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/authorization-pins/")

        self.assertEqual(response.status_code, 403)

    def test_metadata_lists_action_classes(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.get("/api/v1/authorization-pins/", {"realm": "backoffice"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()[0]["realm"], "backoffice")
        self.assertFalse(response.json()[0]["is_configured"])

    def test_wrong_current_pin_is_reported(self):
        services.set_or_rotate(mode=services.RotationMode.SET, new_pin="1234")
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.post(
            "/api/v1/authorization-pins/",
            {"mode": "change", "current_pin": "0000", "new_pin": "4321"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "current_pin_incorrect")

    def test_invalid_pattern_is_reported(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/authorization-pins/", {"mode": "set", "new_pin": "12"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "pin_pattern_invalid")

    def test_verify_endpoint(self):
        services.set_or_rotate(mode=services.RotationMode.SET, new_pin="1234")
        self.client.force_authenticate(user=self.cashier)

        ok = self.client.post(
            "/api/v1/authorization-pins/verify/",
            {"action": "order.void", "pin": "1234"},
            format="json",
            HTTP_X_TERMINAL_ID="TERMINAL-1",
        )
        bad = self.client.post("/api/v1/authorization-pins/verify/", {"action": "order.void", "pin": "1111"}, format="json")

        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json(), {"verified": True, "action": "order.void"})
        self.assertEqual(bad.status_code, 403)
        self.assertEqual(bad.json()["code"], "invalid_pin")
        self.assertEqual(
            AuditLog.objects.filter(action="authorization_pin.verified", terminal=self.terminal).count(),
            1,
        )

    def test_verify_without_configured_pin_conflicts(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/authorization-pins/verify/", {"action": "order.void", "pin": "1234"}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "no_pin_configured")

    def test_verify_is_throttled(self):
        services.set_or_rotate(mode=services.RotationMode.SET, new_pin="1234")
        self.client.force_authenticate(user=self.cashier)

        with patch("rest_framework.throttling.ScopedRateThrottle.allow_request", return_value=False), patch(
            "rest_framework.throttling.ScopedRateThrottle.wait", return_value=None
        ):
            response = self.client.post("/api/v1/authorization-pins/verify/", {"action": "order.void", "pin": "1234"}, format="json")

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()["code"], "throttled")

    def test_verify_store_unavailable_maps_to_503(self):
        self.client.force_authenticate(user=self.cashier)

        with patch("pins.services.get_active_pin", side_effect=OperationalError("database is locked")):
            response = self.client.post("/api/v1/authorization-pins/verify/", {"action": "order.void", "pin": "1234"}, format="json")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["code"], "unavailable")
