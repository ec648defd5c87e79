"""Numeric verification code generation.

Codes are drawn uniformly from [10^(digits-1), 10^digits - 1], so a code
never starts with a zero and always has exactly ``digits`` characters.

Security: Uses the ``secrets`` CSPRNG. Codes must not be predictable from
earlier ones.
"""

import secrets

from verification_engine.core.errors import InvalidArgumentError

DEFAULT_CODE_LENGTH = 6


def generate_numeric_code(digits: int = DEFAULT_CODE_LENGTH) -> str:
    """Generate a random numeric code without a leading zero.

    Args:
        digits: Number of digits in the code.

    Returns:
        String of exactly ``digits`` decimal characters.

    Raises:
        InvalidArgumentError: If digits is not a positive integer.
    """
    if isinstance(digits, bool) or not isinstance(digits, int) or digits <= 0:
        raise InvalidArgumentError(f"digits must be a positive integer, got {digits!r}")

    low = 10 ** (digits - 1)
    high = 10**digits - 1
    return str(low + secrets.randbelow(high - low + 1))
