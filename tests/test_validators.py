"""
Tests for client data validation, contact storage, WhatsApp links and money formatting.
"""

import pytest

from agency.models.client import Client, decode_contacts, encode_contacts, primary_value
from agency.services.email_service import format_money, html_to_text
from agency.services.validators import (
    is_valid_cnpj,
    is_valid_cpf,
    is_valid_phone,
    only_digits,
    validate_contact_list,
    validate_document,
)
from agency.services.whatsapp import build_whatsapp_url

VALID_CPF = "529.982.247-25"
VALID_CNPJ = "11.222.333/0001-81"


class TestDocuments:
    def test_valid_cpf(self):
        assert is_valid_cpf(VALID_CPF)
        assert is_valid_cpf("52998224725")

    @pytest.mark.parametrize("value", ["52998224724", "11111111111", "123", ""])
    def test_invalid_cpf(self, value):
        assert not is_valid_cpf(value)

    def test_valid_cnpj(self):
        assert is_valid_cnpj(VALID_CNPJ)

    @pytest.mark.parametrize("value", ["11222333000182", "00000000000000", "1122233300018"])
    def test_invalid_cnpj(self, value):
        assert not is_valid_cnpj(value)

    def test_validate_document_normalizes(self):
        assert validate_document("cpf", VALID_CPF) == "52998224725"
        assert validate_document("cnpj", VALID_CNPJ) == "11222333000181"

    def test_validate_document_type_mismatch(self):
        with pytest.raises(ValueError):
            validate_document("cnpj", VALID_CPF)

    def test_placeholder_documents_refused(self):
        with pytest.raises(ValueError):
            validate_document("cpf", "AUTO_1700000000000_abc123")


class TestContactLists:
    def test_empty_list_is_fine(self):
        assert validate_contact_list([], "email") == []

    def test_exactly_one_primary(self):
        entries = [
            {"value": "a@b.com", "isPrimary": True},
            {"value": "c@d.com", "type": "trabalho"},
        ]
        cleaned = validate_contact_list(entries, "email")
        assert [e["id"] for e in cleaned] == ["1", "2"]
        assert cleaned[0]["isPrimary"] is True
        assert cleaned[1]["type"] == "trabalho"

    def test_no_primary(self):
        with pytest.raises(ValueError, match="primary"):
            validate_contact_list([{"value": "a@b.com"}], "email")

    def test_two_primaries(self):
        with pytest.raises(ValueError, match="primary"):
            validate_contact_list(
                [{"value": "a@b.com", "isPrimary": True}, {"value": "c@d.com", "isPrimary": True}],
                "email",
            )

    def test_bad_phone(self):
        with pytest.raises(ValueError, match="phone"):
            validate_contact_list([{"value": "1234", "isPrimary": True}], "phone")

    def test_phone_formats(self):
        assert is_valid_phone("(11) 98765-4321")
        assert is_valid_phone("+55 11 98765-4321")
        assert is_valid_phone("1133334444")
        assert not is_valid_phone("98765")


class TestContactStorage:
    def test_primary_entry_wins(self):
        entries = [
            {"id": "1", "value": "a@example.com", "isPrimary": False},
            {"id": "2", "value": "b@example.com", "isPrimary": True},
        ]
        assert primary_value(entries) == "b@example.com"

    def test_first_entry_without_primary(self):
        assert primary_value([{"value": "a@example.com"}, {"value": "b@example.com"}]) == "a@example.com"

    def test_empty_list(self):
        assert primary_value([]) is None
        assert encode_contacts([]) is None

    def test_accents_stored_verbatim(self):
        raw = encode_contacts([{"id": "1", "value": "joão@exemplo.com", "isPrimary": True}])
        assert "joão@exemplo.com" in raw
        assert decode_contacts(raw)[0]["value"] == "joão@exemplo.com"

    def test_malformed_json(self):
        assert decode_contacts("{not json") == []
        assert decode_contacts('{"value": "x"}') == []

    def test_client_primaries(self):
        client = Client(
            name="Ana",
            emails=encode_contacts([{"id": "1", "value": "Ana@Example.com", "isPrimary": True}]),
            phones=encode_contacts([{"id": "1", "value": "11987654321", "isPrimary": True}]),
        )
        assert client.primary_email == "Ana@Example.com"
        assert client.primary_phone == "11987654321"
        assert client.has_email(" ana@example.com")
        assert not client.has_email("na@example.com")


class TestWhatsapp:
    def test_adds_country_code(self):
        url = build_whatsapp_url("(11) 98765-4321", "Olá Maria")
        assert url == "https://wa.me/5511987654321?text=Ol%C3%A1%20Maria"

    def test_keeps_existing_country_code(self):
        url = build_whatsapp_url("+55 11 98765-4321", "hi")
        assert url.startswith("https://wa.me/5511987654321?")

    def test_no_phone(self):
        assert build_whatsapp_url(None, "hi") is None
        assert build_whatsapp_url("123", "hi") is None


class TestFormatting:
    def test_only_digits(self):
        assert only_digits("529.982.247-25") == "52998224725"

    def test_format_money(self):
        assert format_money("2500") == "R$ 2,500.00"
        assert format_money(None) == "R$ 0.00"
        assert format_money(10, "usd") == "USD 10.00"

    def test_html_to_text(self):
        assert html_to_text("<p>Hi<br>there</p>") == "Hi\nthere"
