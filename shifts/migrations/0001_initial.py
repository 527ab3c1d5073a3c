import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="CashShift",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("status", models.CharField(choices=[("open", "Open"), ("closed", "Closed")], default="open", max_length=16)),
                ("opened_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                ("opening_float", models.DecimalField(decimal_places=2, max_digits=12)),
                ("template_code", models.CharField(max_length=20)),
                ("template_name", models.CharField(max_length=60)),
                ("scheduled_start", models.TimeField()),
                ("scheduled_end", models.TimeField()),
                ("opened_early", models.BooleanField(default=False)),
                ("early_minutes", models.PositiveIntegerField(default=0)),
                ("early_reason", models.CharField(blank=True, default="", max_length=255)),
                ("early_note", models.CharField(blank=True, default="", max_length=255)),
                ("cash_in_total", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("cash_out_total", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("expected_cash", models.DecimalField(decimal_places=2, max_digits=12)),
                ("net_cash_sales", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("net_cash_refunds", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("declared_cash", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("variance_cash", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("closing_note", models.CharField(blank=True, default="", max_length=255)),
                (
                    "closed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "operator",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="shifts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "terminal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="shifts",
                        to="core.terminal",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["terminal", "opened_at"], name="shifts_term_opened_idx"),
                    models.Index(fields=["operator", "opened_at"], name="shifts_oper_opened_idx"),
                    models.Index(fields=["status", "opened_at"], name="shifts_status_opened_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "open")),
                        fields=("terminal",),
                        name="uniq_open_shift_per_terminal",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ShiftDenomination",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("denom_value", models.PositiveIntegerField()),
                ("qty", models.PositiveIntegerField(default=0)),
                (
                    "shift",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="opening_denominations",
                        to="shifts.cashshift",
                    ),
                ),
            ],
            options={
                "ordering": ["denom_value"],
                "constraints": [
                    models.UniqueConstraint(fields=("shift", "denom_value"), name="uniq_shift_denomination"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CashMove",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("type", models.CharField(choices=[("cash_in", "Cash In"), ("cash_out", "Cash Out")], max_length=16)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("note", models.CharField(blank=True, default="", max_length=255)),
                ("event_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "recorded_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "shift",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cash_moves",
                        to="shifts.cashshift",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
                "indexes": [
                    models.Index(fields=["shift", "id"], name="shifts_move_shift_seq_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("shift", "event_id"), name="uniq_cash_move_event"),
                ],
            },
        ),
    ]
