import pytest

from agentcore.services.normalization import (
    levenshtein,
    name_similarity,
    normalize_email,
    normalize_name,
    normalize_phone,
)


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw",
        ["5512345678", "55 1234 5678", "(55) 1234-5678", "525512345678", "+52 55 1234 5678"],
    )
    def test_mexican_formats_collapse_to_one_form(self, raw):
        assert normalize_phone(raw) == "+525512345678"

    def test_idempotent(self):
        once = normalize_phone("55 1234 5678")
        assert normalize_phone(once) == once

    def test_foreign_number_keeps_its_prefix(self):
        assert normalize_phone("+1 (415) 555-0100") == "+14155550100"

    def test_custom_country_code(self):
        assert normalize_phone("4155550100", country_code="1") == "+14155550100"

    def test_empty_values(self):
        assert normalize_phone(None) is None
        assert normalize_phone("   ") is None
        assert normalize_phone("n/a") is None


class TestNormalizeEmail:
    def test_trims_and_lowercases(self):
        assert normalize_email("  Ana.Lopez@Example.COM ") == "ana.lopez@example.com"

    def test_blank_is_none(self):
        assert normalize_email("   ") is None


class TestNameSimilarity:
    def test_accents_and_case_ignored(self):
        assert normalize_name("  José   PÉREZ ") == "jose perez"
        assert name_similarity("José Pérez", "jose perez") == 1.0

    def test_levenshtein(self):
        assert levenshtein("kitten", "sitting") == 3
        assert levenshtein("", "abc") == 3

    def test_similarity_range(self):
        score = name_similarity("Maria Gonzalez", "Mario Gonzales")
        assert 0.7 < score < 1.0

    def test_empty_names(self):
        assert name_similarity(None, "") == 0.0
