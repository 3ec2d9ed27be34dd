import html
from decimal import Decimal
from typing import Optional, Union


def sanitize_string(value: Optional[str]) -> str:
    """
    Escape HTML special characters so customer-supplied text can be placed
    inside an email template. None becomes an empty string.
    """
    if value is None:
        return ""
    return html.escape(str(value), quote=True)


def format_money(amount: Union[Decimal, float, int, None]) -> str:
    return f"£{Decimal(str(amount or 0)):.2f}"
