"""Amount input filtering and validation.

The same pattern is applied twice: on every keystroke (``accepts_input``)
and again when the form is submitted (``validate_amount``).
"""

import re
from decimal import Decimal, InvalidOperation

INPUT_PATTERN = re.compile(r"^[0-9]*\.?[0-9]{0,2}$")

MAX_AMOUNT = Decimal("100000")

INVALID_MESSAGE = "Please enter a valid amount."
NOT_POSITIVE_MESSAGE = "Amount must be greater than 0."
TOO_LARGE_MESSAGE = "Amount cannot exceed ₹1,00,000."


class AmountValidationError(ValueError):
    """Raised when raw input is not an acceptable payment amount.

    ``code`` is one of ``invalid``, ``not_positive`` or ``too_large``.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def accepts_input(value: str) -> bool:
    """Return True if *value* may be typed into the amount field."""
    return value == "" or INPUT_PATTERN.match(value) is not None


def validate_amount(raw: str | None) -> Decimal:
    """Parse *raw* into a positive amount no larger than ``MAX_AMOUNT``.

    Raises:
        AmountValidationError: With a distinct code/message per failure.
    """
    text = (raw or "").strip()
    if not text or not INPUT_PATTERN.match(text):
        raise AmountValidationError("invalid", INVALID_MESSAGE)

    try:
        value = Decimal(text)
    except InvalidOperation:
        # "." passes the pattern but is not a number
        raise AmountValidationError("invalid", INVALID_MESSAGE)

    if value <= 0:
        raise AmountValidationError("not_positive", NOT_POSITIVE_MESSAGE)
    if value > MAX_AMOUNT:
        raise AmountValidationError("too_large", TOO_LARGE_MESSAGE)
    return value
