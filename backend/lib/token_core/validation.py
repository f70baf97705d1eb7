# backend/lib/token_core/validation.py
import math
from dataclasses import dataclass
from typing import Optional

VALID = "VALID"
WARNING_READING_INCREASED = "WARNING_READING_INCREASED"
ERROR_INVALID_VALUE = "ERROR_INVALID_VALUE"


@dataclass
class ValidationResult:
    status: str
    is_valid: bool
    is_blocking: bool = False
    delta: Optional[float] = None
    consumption: Optional[float] = None
    message: Optional[str] = None


def validate_reading(new_value, last_value: Optional[float],
                     is_top_up: bool = False) -> ValidationResult:
    """
    Check a new meter value against the last known one.

    The prepaid meter only goes up on a top-up, so a plain reading above
    the previous value is blocked and must be recorded as a top-up.
    """
    try:
        new_value = float(new_value)
    except (TypeError, ValueError):
        return ValidationResult(ERROR_INVALID_VALUE, False, True, message="reading is not a number")
    if math.isnan(new_value):
        return ValidationResult(ERROR_INVALID_VALUE, False, True, message="reading is not a number")
    if new_value < 0:
        return ValidationResult(ERROR_INVALID_VALUE, False, True, message="reading must be >= 0")

    if not last_value:
        return ValidationResult(VALID, True)
    if is_top_up:
        return ValidationResult(VALID, True)

    if new_value > last_value:
        delta = round(new_value - last_value, 2)
        return ValidationResult(
            WARNING_READING_INCREASED, False, True, delta=delta,
            message=f"reading increased by {delta} kWh since {last_value}; record it as a top-up",
        )
    return ValidationResult(VALID, True, consumption=round(last_value - new_value, 2))
