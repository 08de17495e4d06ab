import re

_LOCAL = re.compile(r"^0([17]\d{8})$")
_BARE = re.compile(r"^([17]\d{8})$")
_INTERNATIONAL = re.compile(r"^254([17]\d{8})$")


def normalize_msisdn(raw: str) -> str:
    """Normalize a Kenyan mobile number to the 254XXXXXXXXX form the gateway expects.

    Accepts 07XXXXXXXX / 01XXXXXXXX, 7XXXXXXXX / 1XXXXXXXX and 2547XXXXXXXX,
    with an optional leading '+' and embedded spaces or dashes.
    """
    cleaned = re.sub(r"[\s-]", "", raw or "")
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    for pattern in (_LOCAL, _BARE, _INTERNATIONAL):
        match = pattern.match(cleaned)
        if match:
            return "254" + match.group(1)
    raise ValueError("Enter a valid Kenyan phone number (e.g. 0712345678 or 254712345678)")
