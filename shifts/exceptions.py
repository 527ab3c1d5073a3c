from rest_framework import status

from common.exceptions import DomainError


class InvalidDenomination(DomainError):
    default_code = "invalid_denomination"
    default_detail = "Denomination count is not valid."


class InvalidOpeningFloat(DomainError):
    default_code = "invalid_opening_float"
    default_detail = "Opening float is outside the allowed range."

    BELOW_MINIMUM = "below_minimum"
    ABOVE_MAXIMUM = "above_maximum"


class InvalidAmount(DomainError):
    default_code = "invalid_amount"
    default_detail = "Amount must be greater than zero."


class InvalidCashMoveType(DomainError):
    default_code = "invalid_cash_move_type"
    default_detail = "Cash move type must be cash_in or cash_out."


class ShiftAlreadyOpen(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "shift_already_open"
    default_detail = "A shift is already open on this terminal."


class ShiftNotOpen(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "shift_not_open"
    default_detail = "Shift is not open."


class ShiftAlreadyClosed(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "shift_already_closed"
    default_detail = "Shift is already closed."


class ShiftHasPendingWork(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "shift_has_pending_work"
    default_detail = "Cannot close shift while there is pending work."

