import uuid

from django.db import models
from django.db.models import Q

from core.models import User


class AuthorizationPin(models.Model):
    """One row per secret ever issued. Rotation deactivates the old row and inserts a new one."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    realm = models.CharField(max_length=32)
    action_class = models.CharField(max_length=64)
    pin_hash = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    last_changed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    deactivated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["realm", "action_class", "created_at"], name="pins_realm_class_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["realm", "action_class"],
                condition=Q(is_active=True),
                name="uniq_active_pin_per_realm_class",
            ),
        ]

    def __str__(self):
        state = "active" if self.is_active else "inactive"
        return f"{self.realm}/{self.action_class} ({state})"
