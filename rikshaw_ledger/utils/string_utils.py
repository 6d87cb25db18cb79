import re


def normalize_identifier(value: str) -> str:
    """
    Normalizes a vehicle or document identifier for storage and uniqueness checks.
    1. Strips surrounding whitespace.
    2. Removes internal whitespace.
    3. Converts to uppercase.

    Example: " eng 12345a " -> "ENG12345A"
    """
    if not value:
        return ""
    return re.sub(r"\s+", "", value).upper()


def normalize_phone(phone: str) -> str:
    """
    Keeps digits only, preserving a leading '+'.

    Example: "0300-123 4567" -> "03001234567"
    """
    if not phone:
        return ""
    phone = phone.strip()
    prefix = "+" if phone.startswith("+") else ""
    return prefix + re.sub(r"\D", "", phone)


def matches_search(term: str, *fields) -> bool:
    """Case-insensitive substring match of term against any of the fields."""
    if not term:
        return True
    term = term.strip().lower()
    return any(term in (field or "").lower() for field in fields)
