"""
Text utilities for filename and product-name comparison.

Merchants name files in Spanish and English with accents, separators and
camera-style index suffixes ("Taza_Roja-2.JPG"). Everything here folds
those differences away so names can be compared as plain lowercase words.
"""

import re
import unicodedata
from typing import Optional

# Leading words cameras and exports put in front of the real name.
NOISE_PREFIXES = frozenset({"foto", "img", "image", "imagen", "producto", "photo"})

_EXTENSION_RE = re.compile(r"\.[^./\\\s]+$")
_NON_ALNUM_RE = re.compile(r"[^0-9a-z]+")


def strip_accents(text: str) -> str:
    """
    Remove accent marks, keeping base characters.

    - "Decoración" → "Decoracion"
    - "Piña" → "Pina"
    """
    # NFD separates base chars from combining marks (category 'Mn')
    normalized = unicodedata.normalize("NFD", text)
    return "".join(c for c in normalized if unicodedata.category(c) != "Mn")


def normalize_text(text: Optional[str]) -> str:
    """
    Normalize free text for comparison.

    Lowercases, folds accents and turns every run of non-alphanumeric
    characters into a single space:
    - "Taza Roja (Grande)" → "taza roja grande"
    - "A-1" → "a 1"

    Returns:
        Normalized string, "" for empty input
    """
    if not text:
        return ""
    folded = strip_accents(text).lower()
    return _NON_ALNUM_RE.sub(" ", folded).strip()


def _filename_tokens(filename: str) -> tuple[list[str], Optional[int]]:
    """Tokens of a normalized filename and the index suffix removed from it."""
    # Drop any directory part (zip uploads keep folder names)
    base = re.split(r"[/\\]", filename)[-1]
    base = _EXTENSION_RE.sub("", base)

    tokens = normalize_text(base).split()

    if len(tokens) > 1 and tokens[0] in NOISE_PREFIXES:
        tokens = tokens[1:]

    suffix: Optional[int] = None
    # Never strip the last remaining token: "12345.jpg" is a SKU, not an index
    while len(tokens) > 1 and tokens[-1].isdigit():
        if suffix is None:
            suffix = int(tokens[-1])
        tokens.pop()

    return tokens, suffix


def normalize_filename(filename: Optional[str]) -> str:
    """
    Turn a raw image filename into a comparable clean name.

    - strips the extension and any directory
    - replaces separators (_ - . and other symbols) with spaces
    - drops a leading noise word ("foto_", "IMG_")
    - drops purely numeric trailing tokens ("-2", "_3")
    - lowercases, folds accents and trims

    Examples:
        "A1_foto.jpg" → "a1 foto"
        "platoazul-2.jpg" → "platoazul"
        "IMG_Taza-Roja_3.PNG" → "taza roja"

    Never fails; returns "" when nothing is left.
    """
    if not filename:
        return ""
    tokens, _ = _filename_tokens(filename)
    return " ".join(tokens)


def split_index_suffix(filename: Optional[str]) -> tuple[str, Optional[int]]:
    """
    Clean name plus the numeric index suffix the normalizer removed.

    "platoazul-3.jpg" → ("platoazul", 3)
    "platoazul.jpg" → ("platoazul", None)
    """
    if not filename:
        return "", None
    tokens, suffix = _filename_tokens(filename)
    return " ".join(tokens), suffix


def compact(text: str) -> str:
    """Remove all whitespace ("plato azul" → "platoazul")."""
    return "".join(text.split())
