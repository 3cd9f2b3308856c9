"""Tests for short code generation and normalization."""

from __future__ import annotations

import pytest

from qrbin.utils import short_code
from qrbin.utils.short_code import (
    MAX_SHORT_CODE_ATTEMPTS,
    SHORT_CODE_ALPHABET,
    SHORT_CODE_LENGTH,
    candidate_codes,
    generate_short_code,
    normalize_short_code,
)


class TestGenerateShortCode:
    def test_length_and_alphabet(self) -> None:
        for _ in range(200):
            code = generate_short_code()
            assert len(code) == SHORT_CODE_LENGTH
            assert set(code) <= set(SHORT_CODE_ALPHABET)

    def test_alphabet_has_no_look_alikes(self) -> None:
        """Labels are typed by hand: 0/O and 1/I/L must not both be possible."""
        assert len(SHORT_CODE_ALPHABET) == 31
        for ambiguous in "01OIL":
            assert ambiguous not in SHORT_CODE_ALPHABET


class TestNormalizeShortCode:
    @pytest.mark.parametrize("raw", ["abc234", " ABC234 ", "AbC234"])
    def test_case_and_whitespace_are_ignored(self, raw: str) -> None:
        assert normalize_short_code(raw) == "ABC234"

    @pytest.mark.parametrize("raw", [None, "", "ABC23", "ABC2345", "ABC10O", "ABC-23"])
    def test_outside_code_space_is_rejected(self, raw: str | None) -> None:
        assert normalize_short_code(raw) is None


class TestCandidateCodes:
    def test_attempt_budget(self) -> None:
        assert len(list(candidate_codes())) == MAX_SHORT_CODE_ATTEMPTS

    def test_preferred_code_comes_first_within_budget(self) -> None:
        codes = list(candidate_codes("xyz789"))
        assert codes[0] == "XYZ789"
        assert len(codes) == MAX_SHORT_CODE_ATTEMPTS

    def test_invalid_preferred_code_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(short_code, "generate_short_code", lambda: "222222")
        codes = list(candidate_codes("not-a-code"))
        assert codes == ["222222"] * MAX_SHORT_CODE_ATTEMPTS
