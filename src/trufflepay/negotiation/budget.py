import re
from decimal import Decimal

_BUDGET_PATTERNS = (
    re.compile(r"budget.*?(\d+(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"pay.*?(\d+(?:\.\d+)?)", re.IGNORECASE),
)


def extract_budget(requirements: str, default: Decimal | None = None) -> Decimal | None:
    """
    Pull the buyer's budget out of free-text requirements.

    Example:
        >>> extract_budget("my budget is 1 ENC, happy to pay up to 2 ENC")
        Decimal('1')
    """
    for pattern in _BUDGET_PATTERNS:
        match = pattern.search(requirements or "")
        if match:
            return Decimal(match.group(1))
    return default
