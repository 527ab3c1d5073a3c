from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.exceptions import error_response
from common.permissions import RoleCapabilityPermission, log_capability_denied, user_has_capability
from core.terminals import resolve_terminal
from shifts import services
from shifts.denominations import counts_from_rows
from shifts.exceptions import ShiftNotOpen
from shifts.models import CashShift
from shifts.schedule import ShiftTemplateResolver
from shifts.serializers import (
    CashMoveCreateSerializer,
    CashMoveSerializer,
    CashShiftSerializer,
    ShiftCloseSerializer,
    ShiftOpenSerializer,
    ShiftSummarySerializer,
)

EARLY_OPEN_CONFIRMATION_CODE = "early_open_confirmation_required"


def _terminal_or_error(code):
    terminal, error, _ = resolve_terminal(code)
    if terminal is None:
        raise ValidationError({"terminal": error})
    return terminal


def _shift_queryset():
    return CashShift.objects.select_related("terminal", "operator").prefetch_related("opening_denominations")


class ShiftOpenView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "shift.open"}

    def post(self, request):
        serializer = ShiftOpenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        terminal = _terminal_or_error(serializer.validated_data["terminal"])
        confirm_early = serializer.validated_data.get("confirm_early")

        result = services.open_shift(
            terminal=terminal,
            operator=request.user,
            denominations=counts_from_rows(serializer.validated_data["denominations"]),
            confirm_early=services.EarlyOpenConfirmation(**confirm_early) if confirm_early else None,
            request=request,
        )

        if result.confirmation_required:
            confirmation = result.confirmation
            return error_response(
                code=EARLY_OPEN_CONFIRMATION_CODE,
                message=(
                    f"Opening {confirmation.early_minutes} minutes before {confirmation.template.name} "
                    f"starts requires confirmation."
                ),
                errors=confirmation.as_dict(),
                status_code=status.HTTP_428_PRECONDITION_REQUIRED,
            )

        shift = _shift_queryset().get(pk=result.shift.pk)
        return Response(CashShiftSerializer(shift).data, status=status.HTTP_201_CREATED)


class ShiftCurrentView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "shift.view"}

    def get(self, request):
        code = request.query_params.get("terminal") or getattr(request, "terminal_code", None)
        terminal = _terminal_or_error(code)

        shift = services.get_open_shift(terminal)
        if shift is None:
            raise NotFound("No open shift on this terminal.")

        return Response(CashShiftSerializer(_shift_queryset().get(pk=shift.pk)).data)


class ShiftTemplateView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "shift.view"}

    def get(self, request):
        resolver = ShiftTemplateResolver.from_settings()
        now = timezone.now()
        match = resolver.resolve(now)
        early_minutes = resolver.early_minutes(match.template, now)
        return Response(
            {
                "templates": [template.as_dict() for template in resolver.templates],
                "suggested": match.template.as_dict(),
                "match": match.kind,
                "early_minutes": early_minutes,
                "early_open_tolerance_minutes": resolver.early_open_tolerance_minutes,
                "requires_confirmation": resolver.requires_confirmation(early_minutes),
            }
        )


class ShiftViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = CashShiftSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "shift.view", "retrieve": "shift.view"}
    lookup_value_regex = "[0-9a-f-]{36}"

    def get_queryset(self):
        qs = _shift_queryset().order_by("-opened_at")

        terminal = self.request.query_params.get("terminal")
        status_filter = self.request.query_params.get("status")
        operator_id = self.request.query_params.get("operator_id")

        if terminal:
            qs = qs.filter(terminal__code=terminal)
        if status_filter:
            qs = qs.filter(status=status_filter)
        if operator_id:
            qs = qs.filter(operator_id=operator_id)

        return qs


class CashMoveView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "shift.view", "post": "shift.cash_move"}

    def get(self, request, shift_id):
        shift = CashShift.objects.filter(pk=shift_id).first()
        if shift is None:
            raise NotFound("Shift not found.")
        moves = shift.cash_moves.select_related("recorded_by").order_by("id")
        return Response(CashMoveSerializer(moves, many=True).data)

    def post(self, request, shift_id):
        serializer = CashMoveCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        move, created = services.record_cash_move(
            shift_id=shift_id,
            recorded_by=request.user,
            request=request,
            **serializer.validated_data,
        )
        return Response(
            CashMoveSerializer(move).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class ShiftCloseView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "shift.close.self"}

    def post(self, request, shift_id):
        serializer = ShiftCloseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = request.user
        shift = CashShift.objects.filter(pk=shift_id).only("id", "operator_id").first()
        if shift is None:
            raise ShiftNotOpen(shift_id=shift_id)
        if shift.operator_id != user.id and not user_has_capability(user, "shift.close.override"):
            log_capability_denied(request, "shift.close.override", self.__class__.__name__, "post")
            raise PermissionDenied("Only supervisors or admins can close another operator's shift.")

        closed = services.close_shift(
            shift_id=shift_id,
            closed_by=user,
            request=request,
            **serializer.validated_data,
        )
        return Response(CashShiftSerializer(_shift_queryset().get(pk=closed.pk)).data)


class ShiftSummaryView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "shift.view"}

    def get(self, request, shift_id):
        shift = CashShift.objects.select_related("terminal").filter(pk=shift_id).first()
        if shift is None:
            raise NotFound("Shift not found.")
        return Response(ShiftSummarySerializer(services.get_shift_summary(shift)).data)
