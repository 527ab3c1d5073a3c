from rest_framework import status
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from common.permissions import RoleCapabilityPermission, log_capability_denied, user_has_capability
from core.terminals import resolve_terminal
from pins import services
from pins.serializers import PinMetadataSerializer, PinRotateSerializer, PinVerifySerializer

MODE_CAPABILITIES = {
    services.RotationMode.SET.value: "authorization_pin.set",
    services.RotationMode.CHANGE.value: "authorization_pin.change",
}


class AuthorizationPinView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "authorization_pin.view", "post": "authorization_pin.change"}

    def get(self, request):
        rows = services.get_pin_metadata(request.query_params.get("realm"))
        return Response(PinMetadataSerializer(rows, many=True).data)

    def post(self, request):
        serializer = PinRotateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        capability = MODE_CAPABILITIES[data["mode"]]
        if not user_has_capability(request.user, capability):
            log_capability_denied(request, capability, self.__class__.__name__, "post")
            raise PermissionDenied("You are not allowed to set authorization PINs without the current PIN.")

        record, outcome = services.set_or_rotate(
            mode=data["mode"],
            new_pin=data["new_pin"],
            current_pin=data.get("current_pin") or None,
            realm=data.get("realm"),
            action_class=data.get("action_class") or services.DEFAULT_ACTION_CLASS,
            actor=request.user,
            request=request,
        )
        return Response(
            {
                "realm": record.realm,
                "action_class": record.action_class,
                "outcome": outcome,
                "changed_at": record.created_at,
            },
            status=status.HTTP_201_CREATED,
        )


class AuthorizationPinVerifyView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "authorization_pin.verify"}
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "pin_verify"

    def post(self, request):
        serializer = PinVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        terminal = None
        code = data.get("terminal") or getattr(request, "terminal_code", None)
        if code:
            terminal, error, _ = resolve_terminal(code)
            if terminal is None:
                raise ValidationError({"terminal": error})

        services.verify(
            data["action"],
            data["pin"],
            realm=data.get("realm"),
            actor=request.user,
            terminal=terminal,
            request=request,
        )
        return Response({"verified": True, "action": data["action"]})
