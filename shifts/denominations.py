from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings

from common.utils import format_money, to_money
from shifts.exceptions import InvalidDenomination, InvalidOpeningFloat


@dataclass(frozen=True)
class DenominationLedger:
    """Counts drawer cash by face value and checks opening-float policy."""

    denominations: tuple[int, ...]
    minimum_opening_float: Decimal
    maximum_opening_float: Decimal

    @classmethod
    def from_settings(cls) -> DenominationLedger:
        return cls(
            denominations=tuple(sorted(set(settings.SHIFT_DENOMINATIONS))),
            minimum_opening_float=to_money(settings.SHIFT_MIN_OPENING_FLOAT),
            maximum_opening_float=to_money(settings.SHIFT_MAX_OPENING_FLOAT),
        )

    def normalize(self, counts: Mapping[int, int]) -> dict[int, int]:
        """Return a count for every legal face value, rejecting unknown or negative entries."""
        breakdown = {value: 0 for value in self.denominations}
        for face_value, count in counts.items():
            if isinstance(face_value, bool) or not isinstance(face_value, int) or face_value not in breakdown:
                raise InvalidDenomination(
                    f"{face_value} is not an accepted denomination.",
                    denomination=face_value,
                    accepted=list(self.denominations),
                )
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise InvalidDenomination(
                    f"Count for {face_value} must be a non-negative whole number.",
                    denomination=face_value,
                    count=count,
                )
            breakdown[face_value] = count
        return breakdown

    def total(self, counts: Mapping[int, int]) -> Decimal:
        breakdown = self.normalize(counts)
        return to_money(sum(face_value * count for face_value, count in breakdown.items()))

    def validate_opening_total(self, total: Decimal) -> None:
        total = to_money(total)
        if total < self.minimum_opening_float:
            raise InvalidOpeningFloat(
                f"Opening float must be at least {format_money(self.minimum_opening_float)}. "
                f"You entered {format_money(total)}.",
                reason=InvalidOpeningFloat.BELOW_MINIMUM,
                total=total,
                minimum=self.minimum_opening_float,
                maximum=self.maximum_opening_float,
            )
        if total > self.maximum_opening_float:
            raise InvalidOpeningFloat(
                f"Opening float cannot exceed {format_money(self.maximum_opening_float)}. "
                f"You entered {format_money(total)}.",
                reason=InvalidOpeningFloat.ABOVE_MAXIMUM,
                total=total,
                minimum=self.minimum_opening_float,
                maximum=self.maximum_opening_float,
            )


def counts_from_rows(rows: Iterable[Mapping]) -> dict[int, int]:
    """Fold `[{"denom_value": 100, "qty": 3}, ...]` rows into a face-value mapping."""
    counts: dict[int, int] = {}
    for row in rows:
        face_value = row["denom_value"]
        if face_value in counts:
            raise InvalidDenomination(
                f"Denomination {face_value} was listed more than once.",
                denomination=face_value,
            )
        counts[face_value] = row["qty"]
    return counts
