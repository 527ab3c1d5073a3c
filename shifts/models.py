import uuid

from django.db import models
from django.utils import timezone

from core.models import Terminal, User
from shifts.schedule import ShiftTemplate


class CashShift(models.Model):
    class Status(models.TextChoices):
        OPEN = "open", "Open"
        CLOSED = "closed", "Closed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    terminal = models.ForeignKey(Terminal, on_delete=models.PROTECT, related_name="shifts")
    operator = models.ForeignKey(User, on_delete=models.PROTECT, related_name="shifts")
    closed_by = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name="+")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    opened_at = models.DateTimeField(default=timezone.now)
    closed_at = models.DateTimeField(null=True, blank=True)

    opening_float = models.DecimalField(max_digits=12, decimal_places=2)
    template_code = models.CharField(max_length=20)
    template_name = models.CharField(max_length=60)
    scheduled_start = models.TimeField()
    scheduled_end = models.TimeField()
    opened_early = models.BooleanField(default=False)
    early_minutes = models.PositiveIntegerField(default=0)
    early_reason = models.CharField(max_length=255, blank=True, default="")
    early_note = models.CharField(max_length=255, blank=True, default="")

    # Running drawer position; cash moves apply additive updates.
    cash_in_total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    cash_out_total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    expected_cash = models.DecimalField(max_digits=12, decimal_places=2)

    net_cash_sales = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    net_cash_refunds = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    declared_cash = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    variance_cash = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    closing_note = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=["terminal", "opened_at"], name="shifts_term_opened_idx"),
            models.Index(fields=["operator", "opened_at"], name="shifts_oper_opened_idx"),
            models.Index(fields=["status", "opened_at"], name="shifts_status_opened_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["terminal"],
                condition=models.Q(status="open"),
                name="uniq_open_shift_per_terminal",
            ),
        ]

    def __str__(self):
        return f"{self.terminal_id}:{self.opened_at:%Y-%m-%d %H:%M} ({self.status})"

    @property
    def is_open(self):
        return self.status == self.Status.OPEN

    @property
    def scheduled_template(self):
        return ShiftTemplate(
            code=self.template_code,
            name=self.template_name,
            start=self.scheduled_start,
            end=self.scheduled_end,
        )


class ShiftDenomination(models.Model):
    shift = models.ForeignKey(CashShift, on_delete=models.CASCADE, related_name="opening_denominations")
    denom_value = models.PositiveIntegerField()
    qty = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["denom_value"]
        constraints = [
            models.UniqueConstraint(fields=["shift", "denom_value"], name="uniq_shift_denomination"),
        ]


class CashMove(models.Model):
    """Append-only drawer movement. The auto id doubles as the arrival sequence."""

    class Type(models.TextChoices):
        CASH_IN = "cash_in", "Cash In"
        CASH_OUT = "cash_out", "Cash Out"

    id = models.BigAutoField(primary_key=True)
    shift = models.ForeignKey(CashShift, on_delete=models.PROTECT, related_name="cash_moves")
    type = models.CharField(max_length=16, choices=Type.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    note = models.CharField(max_length=255, blank=True, default="")
    recorded_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name="+")
    event_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["shift", "id"], name="shifts_move_shift_seq_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["shift", "event_id"], name="uniq_cash_move_event"),
        ]
