"""
Client data validation — CPF/CNPJ check digits and contact lists.
"""

import re

AUTO_DOCUMENT_PREFIX = "AUTO_"


def only_digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def _check_digit(digits: list[int], weights: list[int]) -> int:
    rest = sum(d * w for d, w in zip(digits, weights)) % 11
    return 0 if rest < 2 else 11 - rest


def is_valid_cpf(value: str) -> bool:
    digits = only_digits(value)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False
    nums = [int(d) for d in digits]
    first = _check_digit(nums[:9], list(range(10, 1, -1)))
    second = _check_digit(nums[:10], list(range(11, 1, -1)))
    return nums[9] == first and nums[10] == second


def is_valid_cnpj(value: str) -> bool:
    digits = only_digits(value)
    if len(digits) != 14 or digits == digits[0] * 14:
        return False
    nums = [int(d) for d in digits]
    first = _check_digit(nums[:12], [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2])
    second = _check_digit(nums[:13], [6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2])
    return nums[12] == first and nums[13] == second


def validate_document(document_type: str, document: str) -> str:
    """
    Return the normalized (digits only) document or raise ValueError.
    Orchestrator placeholders (``AUTO_...``) are rejected here; they are
    only ever written by the conversion path.
    """
    if not document or document.startswith(AUTO_DOCUMENT_PREFIX):
        raise ValueError("A real CPF or CNPJ is required")
    if document_type == "cpf":
        if not is_valid_cpf(document):
            raise ValueError("Invalid CPF")
    elif document_type == "cnpj":
        if not is_valid_cnpj(document):
            raise ValueError("Invalid CNPJ")
    else:
        raise ValueError("Document type must be 'cpf' or 'cnpj'")
    return only_digits(document)


def is_valid_phone(value: str) -> bool:
    # DDD + 8 or 9 digits, optionally with the 55 country code
    digits = only_digits(value)
    if digits.startswith("55") and len(digits) in (12, 13):
        digits = digits[2:]
    return len(digits) in (10, 11)


def validate_contact_list(entries: list[dict], kind: str) -> list[dict]:
    """
    A non-empty list needs exactly one primary entry and non-blank values.
    Entries missing an id get their 1-based position.
    """
    if not entries:
        return []
    cleaned = []
    for index, entry in enumerate(entries, start=1):
        value = str(entry.get("value", "")).strip()
        if not value:
            raise ValueError(f"Empty {kind} entry")
        if kind == "phone" and not is_valid_phone(value):
            raise ValueError(f"Invalid phone number: {value}")
        cleaned.append({
            "id": str(entry.get("id") or index),
            "value": value,
            "type": entry.get("type") or "pessoal",
            "isPrimary": bool(entry.get("isPrimary")),
        })
    primaries = sum(1 for e in cleaned if e["isPrimary"])
    if primaries != 1:
        raise ValueError(f"Exactly one primary {kind} is required")
    return cleaned
