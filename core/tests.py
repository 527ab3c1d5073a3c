import csv
import io
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from common.audit import emit
from core.models import AuditLog, Terminal
from pins.models import AuthorizationPin
from shifts.models import CashShift

FAST_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class TerminalRoleTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.cashier = self.user_model.objects.create_user(
            username="cashier-core",
            password="pass1234",
            role="cashier",
        )
        self.admin = self.user_model.objects.create_user(
            username="admin-core",
            password="pass1234",
            role="admin",
        )
        self.terminal = Terminal.objects.create(code="TERMINAL-1", name="Front Counter")

    def test_cashier_can_list_terminals(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/terminals/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        self.assertEqual([item["code"] for item in payload["results"]], ["TERMINAL-1"])

    def test_cashier_cannot_manage_terminal_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.cashier)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                "/api/v1/terminals/",
                {"code": "TERMINAL-9", "name": "Cashier Terminal"},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_create_terminal_normalizes_code_and_writes_audit_log(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post(
            "/api/v1/terminals/",
            {"code": " terminal-2 ", "name": "Patio"},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["code"], "TERMINAL-2")
        log = AuditLog.objects.get(action="terminal.create", request_id="req-123")
        self.assertEqual(log.entity, "terminal")
        self.assertEqual(log.actor_role, "admin")

    def test_destroying_terminal_with_shift_history_deactivates_it(self):
        CashShift.objects.create(
            terminal=self.terminal,
            operator=self.cashier,
            status=CashShift.Status.CLOSED,
            opening_float="1500.00",
            expected_cash="1500.00",
            template_code="SHIFT_1",
            template_name="First Shift",
            scheduled_start="08:00",
            scheduled_end="15:00",
        )
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/terminals/{self.terminal.id}/")

        self.assertEqual(response.status_code, 204)
        self.terminal.refresh_from_db()
        self.assertFalse(self.terminal.is_active)
        self.assertTrue(AuditLog.objects.filter(action="terminal.deactivate", entity_id=self.terminal.id).exists())

    def test_terminal_with_open_shift_cannot_be_removed_or_deactivated(self):
        shift = CashShift.objects.create(
            terminal=self.terminal,
            operator=self.cashier,
            opening_float="1500.00",
            expected_cash="1500.00",
            template_code="SHIFT_1",
            template_name="First Shift",
            scheduled_start="08:00",
            scheduled_end="15:00",
        )
        self.client.force_authenticate(user=self.admin)

        deleted = self.client.delete(f"/api/v1/terminals/{self.terminal.id}/")
        deactivated = self.client.patch(f"/api/v1/terminals/{self.terminal.id}/", {"is_active": False}, format="json")

        self.assertEqual(deleted.status_code, 409)
        self.assertEqual(deleted.json()["code"], "shift_already_open")
        self.assertEqual(deleted.json()["errors"]["shift_id"], str(shift.id))
        self.assertEqual(deactivated.status_code, 409)
        self.terminal.refresh_from_db()
        self.assertTrue(self.terminal.is_active)
        self.assertFalse(AuditLog.objects.filter(action__in=["terminal.deactivate", "terminal.update"]).exists())

        self.client.force_authenticate(user=self.cashier)
        current = self.client.get("/api/v1/shifts/current/", {"terminal": "TERMINAL-1"})
        self.assertEqual(current.status_code, 200)
        self.assertEqual(current.json()["id"], str(shift.id))


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(
            username="audit-admin",
            password="pass1234",
            role="admin",
        )
        self.supervisor = self.user_model.objects.create_user(
            username="audit-supervisor",
            password="pass1234",
            role="supervisor",
        )
        self.terminal = Terminal.objects.create(code="TERMINAL-1", name="Front Counter")

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_supervisor_cannot_read_audit_trail(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)

    def test_filters_by_action_and_terminal(self):
        AuditLog.objects.create(action="shift.opened", entity="shift", terminal=self.terminal)
        AuditLog.objects.create(action="shift.closed", entity="shift", terminal=self.terminal)
        AuditLog.objects.create(action="shift.opened", entity="shift")
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"action": "shift.opened", "terminal": "TERMINAL-1"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["terminal_code"], "TERMINAL-1")

    def test_export_writes_csv(self):
        AuditLog.objects.create(
            action="shift.closed",
            entity="shift",
            actor=self.admin,
            actor_label="audit-admin",
            actor_role="admin",
            terminal=self.terminal,
        )
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/export/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        rows = list(csv.reader(io.StringIO(response.content.decode())))
        self.assertEqual(rows[0][:6], ["id", "created_at", "actor", "role", "terminal", "action"])
        self.assertEqual(rows[1][2:6], ["audit-admin", "admin", "TERMINAL-1", "shift.closed"])


class AuditEmitterTests(TestCase):
    def test_emit_records_actor_label_and_detail(self):
        user = get_user_model().objects.create_user(username="emitter", first_name="Mona", last_name="Said")

        log = emit("shift.opened", user, {"opening_float": "1500.00"}, entity="shift")

        self.assertEqual(log.actor_label, "Mona Said")
        self.assertEqual(log.detail, {"opening_float": "1500.00"})

    def test_emit_without_actor_is_attributed_to_system(self):
        log = emit("authorization_pin.set", None, None, entity="authorization_pin")

        self.assertEqual(log.actor_label, "system")
        self.assertIsNone(log.actor)

    def test_emit_failure_is_logged_and_swallowed(self):
        with patch("common.audit.create_audit_log", side_effect=RuntimeError("log store down")):
            with self.assertLogs("common.audit", level="ERROR") as logs:
                result = emit("shift.closed", None, {}, entity="shift")

        self.assertIsNone(result)
        self.assertTrue(any("audit_emit_failed" in message for message in logs.output))


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class OperatorTokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        get_user_model().objects.create_user(
            username="token-cashier",
            email="Token.Cashier@Example.com",
            password="pass1234",
            role="cashier",
        )

    def test_token_can_be_obtained_with_email(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token.cashier@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())

    def test_wrong_password_is_rejected_in_envelope(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token-cashier", "password": "nope"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["status"], 401)


class HealthTests(TestCase):
    def test_healthz_and_readyz(self):
        client = APIClient()

        health = client.get("/healthz/", HTTP_X_REQUEST_ID="req-health")
        ready = client.get("/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json(), {"status": "ok", "request_id": "req-health"})
        self.assertEqual(ready.json()["status"], "ready")


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class SetAuthorizationPinCommandTests(TestCase):
    def test_sets_then_resets_pin(self):
        out = io.StringIO()

        call_command("set_authorization_pin", "--pin", "4321", stdout=out)
        call_command("set_authorization_pin", "--pin", "8765", stdout=out)

        self.assertIn("set for pos/override", out.getvalue())
        self.assertIn("reset for pos/override", out.getvalue())
        self.assertEqual(AuthorizationPin.objects.filter(realm="pos", action_class="override").count(), 2)
        self.assertEqual(AuthorizationPin.objects.filter(is_active=True).count(), 1)
        self.assertEqual(
            set(AuditLog.objects.filter(entity="authorization_pin").values_list("action", flat=True)),
            {"authorization_pin.set", "authorization_pin.reset"},
        )

    def test_rejects_malformed_pin(self):
        with self.assertRaises(CommandError):
            call_command("set_authorization_pin", "--pin", "12ab", stdout=io.StringIO())

        self.assertFalse(AuthorizationPin.objects.exists())
