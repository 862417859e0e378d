"""
WhatsApp click-to-chat links (``https://wa.me/<number>?text=...``).
"""

from urllib.parse import quote

from agency.services.validators import only_digits


def build_whatsapp_url(phone: str | None, message: str, country_code: str = "55") -> str | None:
    """Return a wa.me link, or None when there is no usable number."""
    digits = only_digits(phone or "")
    if len(digits) < 8:
        return None
    if not digits.startswith(country_code) or len(digits) <= 11:
        digits = f"{country_code}{digits}"
    return f"https://wa.me/{digits}?text={quote(message)}"
