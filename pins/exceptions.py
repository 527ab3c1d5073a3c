from rest_framework import status

from common.exceptions import DomainError


class NoPinConfigured(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "no_pin_configured"
    default_detail = "No authorization PIN is configured for this action."


class InvalidPin(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "invalid_pin"
    default_detail = "Authorization PIN is incorrect."


class PatternInvalid(DomainError):
    default_code = "pin_pattern_invalid"
    default_detail = "PIN must be numeric and of the configured length."


class CurrentRequired(DomainError):
    default_code = "current_pin_required"
    default_detail = "The current PIN is required to change it."


class CurrentIncorrect(DomainError):
    default_code = "current_pin_incorrect"
    default_detail = "The current PIN is incorrect."


class NoExistingSecret(DomainError):
    default_code = "no_existing_pin"
    default_detail = "There is no PIN to change yet. Ask an administrator to set one."


class UnknownProtectedAction(DomainError):
    default_code = "unknown_protected_action"
    default_detail = "Action is not protected by an authorization PIN."


class RotationConflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "pin_rotation_conflict"
    default_detail = "The PIN was changed concurrently. Reload and try again."


class UnknownRealm(DomainError):
    default_code = "unknown_realm"
    default_detail = "Authorization PIN realm is not configured."
