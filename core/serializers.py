from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.models import AuditLog, Terminal

User = get_user_model()


class OperatorTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = getattr(user, "role", None)
        token["is_superuser"] = user.is_superuser
        return token

    def validate(self, attrs):
        username = attrs.get("username", "")
        if username and "@" in username:
            user = User.objects.filter(email__iexact=username).first()
            if user is not None:
                attrs["username"] = user.get_username()
        return super().validate(attrs)


class TerminalSerializer(serializers.ModelSerializer):
    class Meta:
        model = Terminal
        fields = ["id", "code", "name", "last_seen_at", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "last_seen_at", "created_at", "updated_at"]

    def validate_code(self, value):
        return value.strip().upper()


class AuditLogSerializer(serializers.ModelSerializer):
    terminal_code = serializers.CharField(source="terminal.code", read_only=True, allow_null=True)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_label",
            "actor_role",
            "terminal",
            "terminal_code",
            "action",
            "entity",
            "entity_id",
            "detail",
            "event_id",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
