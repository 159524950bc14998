import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def format_phone_number(phone: Optional[str]) -> str:
    """
    Canonical international format shared by dashboard writes and the webhook.

    - empty / None            -> ""
    - 10 digits               -> +1XXXXXXXXXX
    - 11 digits starting "1"  -> +1XXXXXXXXXX
    - already starts with "+" -> unchanged
    - anything else           -> "+1" + digits
    """
    if not phone:
        return ""

    digits_only = _NON_DIGITS.sub("", phone)

    if len(digits_only) == 10:
        return f"+1{digits_only}"

    if len(digits_only) == 11 and digits_only.startswith("1"):
        return f"+{digits_only}"

    if phone.startswith("+"):
        return phone

    return f"+1{digits_only}"
