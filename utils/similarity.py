"""
String similarity scores on a 0-100 scale.

Two measures are computed and the higher one wins:
- bigram overlap (Dice coefficient over adjacent character pairs,
  whitespace ignored), good at reordered or glued words
  ("platoazul" vs "plato azul")
- normalized edit distance (1 - distance / longest length), good at
  typos ("taza rioja" vs "taza roja")
"""

from collections import Counter

from rapidfuzz.distance import Levenshtein

from utils.text_utils import compact


def _bigrams(text: str) -> Counter:
    return Counter(text[i:i + 2] for i in range(len(text) - 1))


def bigram_overlap(a: str, b: str) -> int:
    """
    Dice coefficient of character bigrams, scaled 0-100.

    Whitespace is removed first. Strings too short to have a bigram
    only score 100 when identical.
    """
    a, b = compact(a), compact(b)
    if not a or not b:
        return 0
    if a == b:
        return 100
    if len(a) < 2 or len(b) < 2:
        return 0

    first, second = _bigrams(a), _bigrams(b)
    shared = sum((first & second).values())
    total = sum(first.values()) + sum(second.values())
    return round(200 * shared / total)


def edit_similarity(a: str, b: str) -> int:
    """1 - levenshtein(a, b) / max(len(a), len(b)), scaled 0-100."""
    if not a or not b:
        return 0
    longest = max(len(a), len(b))
    distance = Levenshtein.distance(a, b)
    return round(100 * (1 - distance / longest))


def similarity_score(a: str, b: str) -> int:
    """
    Similarity of two already-normalized strings.

    Symmetric; 0 when either string is empty.

    Returns:
        int in [0, 100]
    """
    if not a or not b:
        return 0
    return max(bigram_overlap(a, b), edit_similarity(a, b))
