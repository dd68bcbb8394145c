"""Tests for services.name_normalizer."""

import pytest

from roster_reconcile.services.name_normalizer import contains_ideograph, format_roster_name, normalize_name


class TestNormalizeName:
    def test_zero_folds_onto_letter_o(self):
        assert normalize_name("O0oO") == normalize_name("0000") == "OOOO"

    def test_whitespace_and_case_are_ignored(self):
        assert normalize_name(" wang  lei\t") == "WANGLEI"
        assert normalize_name("李 雷") == normalize_name("李雷")

    @pytest.mark.parametrize("value", ["WANG LEI", "李 雷", "o0 Zhou", "  ", "Ana-María 0"])
    def test_idempotent(self, value):
        once = normalize_name(value)
        assert normalize_name(once) == once

    def test_none_and_numbers(self):
        assert normalize_name(None) == ""
        assert normalize_name(100) == "1OO"


class TestFormatRosterName:
    def test_chinese_names_are_space_separated(self):
        assert format_roster_name("李雷") == "李 雷"
        assert format_roster_name(" 欧阳 娜娜 ") == "欧 阳 娜 娜"

    def test_latin_names_are_only_trimmed(self):
        assert format_roster_name("  WANG LEI ") == "WANG LEI"

    def test_blank(self):
        assert format_roster_name(None) == ""
        assert format_roster_name("") == ""

    def test_contains_ideograph(self):
        assert contains_ideograph("Li 雷")
        assert not contains_ideograph("Li Lei")
