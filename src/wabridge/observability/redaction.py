"""Log context helpers. Message text and phone numbers never reach the logs in clear."""

from typing import Any

# Keys whose values are personal data: numbers are masked, text is reduced to its length
_NUMBER_KEYS = frozenset({"counterpart_number", "phone_number", "from", "to", "remote_jid"})
_TEXT_KEYS = frozenset({"content", "text", "caption"})


def mask_number(value: str) -> str:
    """Keep the last four digits of a phone number or JID prefix.

    Example:
        "6281234567890" -> "*********7890"
    """
    number = value.split("@", 1)[0]
    if len(number) <= 4:
        return "*" * len(number)
    return "*" * (len(number) - 4) + number[-4:]


def mask_api_key(api_key: str) -> str:
    """Mask an API key for display, keeping the first and last four characters."""
    if len(api_key) < 8:
        return api_key
    return api_key[:4] + "*" * (len(api_key) - 8) + api_key[-4:]


def _context_value(key: str, value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if key in _NUMBER_KEYS:
        return mask_number(str(value))
    if key in _TEXT_KEYS:
        return f"<text len={len(str(value))}>"
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return str(value)


def log_context(**kwargs: Any) -> dict[str, Any]:
    """Build a context dict safe for logging.

    Identifiers (device_id, session_id, event_type, ...) pass through;
    phone numbers are masked and message text is reduced to its length.
    """
    return {k: _context_value(k, v) for k, v in kwargs.items()}
