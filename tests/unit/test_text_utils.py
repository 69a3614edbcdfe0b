"""
Unit tests for filename and text normalization.

Run: pytest tests/unit/test_text_utils.py -v
"""

import pytest

from utils.text_utils import (
    compact,
    normalize_filename,
    normalize_text,
    split_index_suffix,
    strip_accents,
)


class TestStripAccents:
    """Tests for strip_accents()"""

    def test_removes_spanish_accents(self):
        assert strip_accents("Decoración") == "Decoracion"
        assert strip_accents("Piña") == "Pina"

    def test_plain_text_unchanged(self):
        assert strip_accents("Taza Roja") == "Taza Roja"


class TestNormalizeText:
    """Tests for normalize_text()"""

    def test_lowercases_and_collapses_symbols(self):
        assert normalize_text("Taza Roja (Grande)") == "taza roja grande"

    def test_separators_become_spaces(self):
        assert normalize_text("A-1") == "a 1"
        assert normalize_text("plato__azul..XL") == "plato azul xl"

    def test_empty_input(self):
        assert normalize_text("") == ""
        assert normalize_text(None) == ""


class TestNormalizeFilename:
    """Tests for normalize_filename()"""

    @pytest.mark.parametrize("filename,expected", [
        ("A1_foto.jpg", "a1 foto"),
        ("platoazul-2.jpg", "platoazul"),
        ("IMG_Taza-Roja_3.PNG", "taza roja"),
        ("Taza.Roja.jpeg", "taza roja"),
        ("random_unrelated.png", "random unrelated"),
        ("fotos/Decoración-Piña.webp", "decoracion pina"),
    ])
    def test_clean_names(self, filename, expected):
        assert normalize_filename(filename) == expected

    def test_numeric_only_name_is_kept(self):
        """A filename that is only a number is a SKU, not an index suffix."""
        assert normalize_filename("12345.jpg") == "12345"

    def test_noise_word_alone_is_kept(self):
        assert normalize_filename("foto.jpg") == "foto"

    def test_strips_several_trailing_numbers(self):
        assert normalize_filename("taza roja 2 1.jpg") == "taza roja"

    def test_never_fails(self):
        assert normalize_filename("") == ""
        assert normalize_filename(None) == ""
        assert normalize_filename("___.jpg") == ""


class TestSplitIndexSuffix:
    """Tests for split_index_suffix()"""

    def test_returns_suffix(self):
        assert split_index_suffix("platoazul-3.jpg") == ("platoazul", 3)

    def test_no_suffix(self):
        assert split_index_suffix("platoazul.jpg") == ("platoazul", None)

    def test_empty(self):
        assert split_index_suffix(None) == ("", None)


def test_compact_removes_whitespace():
    assert compact("plato  azul grande") == "platoazulgrande"
