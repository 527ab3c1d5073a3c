import logging
import re

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.db import IntegrityError, models, transaction
from django.utils import timezone

from common.audit import emit
from common.exceptions import translate_storage_errors
from pins.exceptions import (
    CurrentIncorrect,
    CurrentRequired,
    InvalidPin,
    NoExistingSecret,
    NoPinConfigured,
    PatternInvalid,
    RotationConflict,
    UnknownProtectedAction,
    UnknownRealm,
)
from pins.models import AuthorizationPin

logger = logging.getLogger(__name__)

DEFAULT_ACTION_CLASS = "override"


class RotationMode(models.TextChoices):
    SET = "set", "Set"
    CHANGE = "change", "Change"


class RotationOutcome(models.TextChoices):
    SET = "set", "Set"
    RESET = "reset", "Reset"
    CHANGED = "changed", "Changed"


def resolve_realm(realm=None):
    realm = realm or settings.AUTHORIZATION_PIN_DEFAULT_REALM
    if realm not in settings.AUTHORIZATION_PIN_REALMS:
        raise UnknownRealm(realm=realm, realms=list(settings.AUTHORIZATION_PIN_REALMS))
    return realm


def action_classes():
    return sorted(set(settings.AUTHORIZATION_PIN_ACTIONS.values()))


def action_class_for(action):
    try:
        return settings.AUTHORIZATION_PIN_ACTIONS[action]
    except KeyError:
        raise UnknownProtectedAction(
            protected_action=action,
            protected_actions=sorted(settings.AUTHORIZATION_PIN_ACTIONS),
        ) from None


def validate_pattern(pin):
    min_length, max_length = settings.AUTHORIZATION_PIN_LENGTH
    if not isinstance(pin, str) or not re.fullmatch(rf"\d{{{min_length},{max_length}}}", pin):
        raise PatternInvalid(
            f"PIN must be {min_length} to {max_length} digits.",
            min_length=min_length,
            max_length=max_length,
        )


def get_active_pin(realm, action_class):
    return (
        AuthorizationPin.objects.select_related("last_changed_by")
        .filter(realm=realm, action_class=action_class, is_active=True)
        .first()
    )


@translate_storage_errors
def verify(action, pin, *, realm=None, actor=None, terminal=None, request=None):
    """Check `pin` against the active secret guarding `action`.

    Every attempt, successful or not, is written to the audit trail.
    """
    realm = resolve_realm(realm)
    action_class = action_class_for(action)
    active = get_active_pin(realm, action_class)

    if active is None:
        _record_attempt(action, realm, success=False, actor=actor, terminal=terminal, request=request)
        raise NoPinConfigured(realm=realm, protected_action=action)

    success = bool(pin) and check_password(str(pin), active.pin_hash)
    _record_attempt(action, realm, success=success, actor=actor, terminal=terminal, request=request)
    if not success:
        logger.warning("authorization_pin_rejected", extra={"action": action, "code": InvalidPin.default_code})
        raise InvalidPin(realm=realm, protected_action=action)
    return True


def _record_attempt(action, realm, *, success, actor, terminal, request):
    emit(
        "authorization_pin.verified",
        actor,
        {"protected_action": action, "realm": realm, "success": success},
        entity="authorization_pin",
        terminal=terminal,
        request=request,
    )


@translate_storage_errors
def set_or_rotate(*, mode, new_pin, current_pin=None, realm=None, action_class=DEFAULT_ACTION_CLASS, actor=None, request=None):
    """Issue a new active PIN, deactivating the previous one.

    `change` proves knowledge of the current PIN first. `set` is the privileged
    path and needs no current PIN; it reports `reset` when it replaced one.
    Returns `(record, outcome)`.
    """
    realm = resolve_realm(realm)
    if action_class not in action_classes():
        raise UnknownProtectedAction(action_class=action_class, action_classes=action_classes())
    validate_pattern(new_pin)
    if mode == RotationMode.CHANGE and not current_pin:
        raise CurrentRequired(realm=realm, action_class=action_class)

    now = timezone.now()
    with transaction.atomic():
        current = (
            AuthorizationPin.objects.select_for_update()
            .filter(realm=realm, action_class=action_class, is_active=True)
            .first()
        )

        if mode == RotationMode.CHANGE:
            if current is None:
                raise NoExistingSecret(realm=realm, action_class=action_class)
            if not check_password(current_pin, current.pin_hash):
                logger.warning("authorization_pin_change_rejected", extra={"code": CurrentIncorrect.default_code})
                raise CurrentIncorrect(realm=realm, action_class=action_class)
            outcome = RotationOutcome.CHANGED
        else:
            outcome = RotationOutcome.RESET if current is not None else RotationOutcome.SET

        if current is not None:
            deactivated = AuthorizationPin.objects.filter(pk=current.pk, is_active=True).update(
                is_active=False,
                deactivated_at=now,
            )
            if not deactivated:
                raise RotationConflict(realm=realm, action_class=action_class)

        try:
            with transaction.atomic():
                record = AuthorizationPin.objects.create(
                    realm=realm,
                    action_class=action_class,
                    pin_hash=make_password(new_pin),
                    last_changed_by=actor if getattr(actor, "is_authenticated", False) else None,
                )
        except IntegrityError as exc:
            raise RotationConflict(realm=realm, action_class=action_class) from exc

    emit(
        f"authorization_pin.{outcome.value}",
        actor,
        {"realm": realm, "action_class": action_class, "mode": str(mode)},
        entity="authorization_pin",
        entity_id=record.id,
        request=request,
    )
    logger.info("authorization_pin_rotated", extra={"action": outcome.value})
    return record, outcome


@translate_storage_errors
def get_pin_metadata(realm=None):
    """Describe which action classes in a realm are guarded. Never exposes hashes."""
    realm = resolve_realm(realm)
    rows = []
    for action_class in action_classes():
        active = get_active_pin(realm, action_class)
        rows.append(
            {
                "realm": realm,
                "action_class": action_class,
                "protected_actions": sorted(
                    action for action, klass in settings.AUTHORIZATION_PIN_ACTIONS.items() if klass == action_class
                ),
                "is_configured": active is not None,
                "last_changed_at": active.created_at if active else None,
                "last_changed_by": active.last_changed_by.get_username() if active and active.last_changed_by else None,
            }
        )
    return rows
