import pytest

from plantshop.utils.phone import normalize_phone, phones_match


@pytest.mark.parametrize("raw", [
    "+79991234567",
    "89991234567",
    "79991234567",
    "9991234567",
    "8 (999) 123-45-67",
    "+7 999 123 45 67",
    "7-999-123-45-67",
])
def test_russian_formats_normalize_to_same_key(raw):
    assert normalize_phone(raw) == "+79991234567"


@pytest.mark.parametrize("raw", [
    "+79991234567",
    "8 (999) 123-45-67",
    "9991234567",
    "12345",
    "+44 20 7946 0958",
    "",
])
def test_normalization_is_idempotent(raw):
    once = normalize_phone(raw)
    assert normalize_phone(once) == once


def test_empty_input_gives_empty_string():
    assert normalize_phone(None) == ""
    assert normalize_phone("") == ""


def test_malformed_input_is_not_rejected():
    assert normalize_phone("12345") == "12345"
    assert normalize_phone("abc") == ""


def test_phones_match():
    assert phones_match("8 999 123-45-67", "+7 (999) 1234567")
    assert not phones_match("+79991234567", "+79991234568")
    assert not phones_match("", "")
