from rest_framework import serializers

from pins.services import RotationMode


class PinMetadataSerializer(serializers.Serializer):
    realm = serializers.CharField()
    action_class = serializers.CharField()
    protected_actions = serializers.ListField(child=serializers.CharField())
    is_configured = serializers.BooleanField()
    last_changed_at = serializers.DateTimeField(allow_null=True)
    last_changed_by = serializers.CharField(allow_null=True)


class PinRotateSerializer(serializers.Serializer):
    mode = serializers.ChoiceField(choices=RotationMode.choices)
    realm = serializers.CharField(max_length=32, required=False)
    action_class = serializers.CharField(max_length=64, required=False)
    current_pin = serializers.CharField(max_length=16, required=False, allow_blank=True, write_only=True, trim_whitespace=False)
    new_pin = serializers.CharField(max_length=16, write_only=True, trim_whitespace=False)


class PinVerifySerializer(serializers.Serializer):
    action = serializers.CharField(max_length=64)
    pin = serializers.CharField(max_length=16, write_only=True, trim_whitespace=False)
    realm = serializers.CharField(max_length=32, required=False)
    terminal = serializers.CharField(max_length=64, required=False)
