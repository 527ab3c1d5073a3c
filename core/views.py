import csv
import logging

from django.db import connections
from django.http import HttpResponse
from django.utils.dateparse import parse_datetime
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenObtainPairView

from common.audit import emit
from common.permissions import RoleCapabilityPermission
from core.models import AuditLog, Terminal
from core.serializers import AuditLogSerializer, OperatorTokenObtainPairSerializer, TerminalSerializer
from shifts.exceptions import ShiftAlreadyOpen
from shifts.models import CashShift

logger = logging.getLogger(__name__)


class OperatorTokenObtainPairView(TokenObtainPairView):
    serializer_class = OperatorTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class TerminalViewSet(viewsets.ModelViewSet):
    queryset = Terminal.objects.all().order_by("code")
    serializer_class = TerminalSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "terminal.read",
        "retrieve": "terminal.read",
        "create": "terminal.manage",
        "update": "terminal.manage",
        "partial_update": "terminal.manage",
        "destroy": "terminal.manage",
    }

    def _audit(self, action, instance, detail):
        emit(
            action,
            self.request.user,
            detail,
            entity="terminal",
            entity_id=instance.id,
            terminal=instance if action != "terminal.delete" else None,
            request=self.request,
        )

    def _ensure_no_open_shift(self, instance):
        open_shift = instance.shifts.filter(status=CashShift.Status.OPEN).select_related("operator").first()
        if open_shift is not None:
            raise ShiftAlreadyOpen(
                "Close the open shift before removing this terminal.",
                terminal=instance.code,
                shift_id=open_shift.id,
                operator=open_shift.operator.get_username(),
            )

    def perform_create(self, serializer):
        instance = serializer.save()
        self._audit("terminal.create", instance, {"after": self.get_serializer(instance).data})

    def perform_update(self, serializer):
        if serializer.validated_data.get("is_active") is False:
            self._ensure_no_open_shift(serializer.instance)
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(
            "terminal.update",
            instance,
            {"before": before_snapshot, "after": self.get_serializer(instance).data},
        )

    def perform_destroy(self, instance):
        self._ensure_no_open_shift(instance)
        # Terminals with shift history are protected; deactivate instead.
        if instance.shifts.exists():
            instance.is_active = False
            instance.save(update_fields=["is_active", "updated_at"])
            self._audit("terminal.deactivate", instance, {"code": instance.code})
            return
        self._audit("terminal.delete", instance, {"before": self.get_serializer(instance).data})
        instance.delete()


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor", "terminal")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "admin.records.manage", "retrieve": "admin.records.manage", "export": "admin.records.manage"}

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")

        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        actor_id = self.request.query_params.get("actor_id")
        action = self.request.query_params.get("action")
        entity = self.request.query_params.get("entity")
        entity_id = self.request.query_params.get("entity_id")
        terminal = self.request.query_params.get("terminal")

        if start_date:
            dt = parse_datetime(start_date)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        if end_date:
            dt = parse_datetime(end_date)
            if dt:
                qs = qs.filter(created_at__lte=dt)
        if actor_id:
            qs = qs.filter(actor_id=actor_id)
        if action:
            qs = qs.filter(action=action)
        if entity:
            qs = qs.filter(entity=entity)
        if entity_id:
            qs = qs.filter(entity_id=entity_id)
        if terminal:
            qs = qs.filter(terminal__code=terminal)

        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        logs = self.get_queryset()
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'

        writer = csv.writer(response)
        writer.writerow(["id", "created_at", "actor", "role", "terminal", "action", "entity", "entity_id", "event_id", "request_id"])
        for log in logs:
            writer.writerow(
                [
                    log.id,
                    log.created_at.isoformat(),
                    log.actor_label,
                    log.actor_role,
                    getattr(log.terminal, "code", ""),
                    log.action,
                    log.entity,
                    log.entity_id,
                    log.event_id,
                    log.request_id,
                ]
            )
        return response


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
