from rest_framework import serializers

from shifts.models import CashMove, CashShift, ShiftDenomination


class DenominationRowSerializer(serializers.Serializer):
    denom_value = serializers.IntegerField(min_value=1)
    qty = serializers.IntegerField(min_value=0)


class EarlyOpenConfirmationSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255)
    note = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    pin = serializers.CharField(max_length=16, required=False, allow_blank=True, write_only=True)


class ShiftOpenSerializer(serializers.Serializer):
    terminal = serializers.CharField(max_length=64)
    denominations = DenominationRowSerializer(many=True, allow_empty=False)
    confirm_early = EarlyOpenConfirmationSerializer(required=False, allow_null=True)


class CashMoveCreateSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=CashMove.Type.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    note = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    event_id = serializers.UUIDField(required=False, allow_null=True)


class ShiftCloseSerializer(serializers.Serializer):
    declared_cash = serializers.DecimalField(max_digits=12, decimal_places=2)
    closing_note = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    cart_item_count = serializers.IntegerField(min_value=0, required=False, default=0)


class ShiftDenominationSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShiftDenomination
        fields = ["denom_value", "qty"]


class CashMoveSerializer(serializers.ModelSerializer):
    sequence = serializers.IntegerField(source="id", read_only=True)
    recorded_by_username = serializers.CharField(source="recorded_by.username", read_only=True)

    class Meta:
        model = CashMove
        fields = [
            "sequence",
            "shift",
            "type",
            "amount",
            "note",
            "event_id",
            "recorded_by",
            "recorded_by_username",
            "created_at",
        ]
        read_only_fields = fields


class CashShiftSerializer(serializers.ModelSerializer):
    terminal_code = serializers.CharField(source="terminal.code", read_only=True)
    operator_username = serializers.CharField(source="operator.username", read_only=True)
    scheduled_template = serializers.SerializerMethodField()
    opening_denominations = ShiftDenominationSerializer(many=True, read_only=True)

    class Meta:
        model = CashShift
        fields = [
            "id",
            "terminal",
            "terminal_code",
            "operator",
            "operator_username",
            "status",
            "opened_at",
            "closed_at",
            "closed_by",
            "opening_float",
            "opening_denominations",
            "scheduled_template",
            "opened_early",
            "early_minutes",
            "early_reason",
            "early_note",
            "cash_in_total",
            "cash_out_total",
            "net_cash_sales",
            "net_cash_refunds",
            "expected_cash",
            "declared_cash",
            "variance_cash",
            "closing_note",
        ]
        read_only_fields = fields

    def get_scheduled_template(self, obj):
        return obj.scheduled_template.as_dict()


class ShiftSummarySerializer(serializers.Serializer):
    shift_id = serializers.UUIDField()
    terminal = serializers.CharField()
    status = serializers.CharField()
    opened_at = serializers.DateTimeField()
    closed_at = serializers.DateTimeField(allow_null=True)
    opening_float = serializers.DecimalField(max_digits=12, decimal_places=2)
    cash_in_total = serializers.DecimalField(max_digits=12, decimal_places=2)
    cash_out_total = serializers.DecimalField(max_digits=12, decimal_places=2)
    net_cash_sales = serializers.DecimalField(max_digits=12, decimal_places=2)
    net_cash_refunds = serializers.DecimalField(max_digits=12, decimal_places=2)
    expected_cash = serializers.DecimalField(max_digits=12, decimal_places=2)
    declared_cash = serializers.DecimalField(max_digits=12, decimal_places=2, allow_null=True)
    variance_cash = serializers.DecimalField(max_digits=12, decimal_places=2, allow_null=True)
    closing_note = serializers.CharField(allow_blank=True)
    cash_move_count = serializers.IntegerField()
