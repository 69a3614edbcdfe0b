"""
Matching service: pair uploaded images with feed rows.

Each primary image is checked against the feed in priority order and the
first rule that fires wins:

1. exact     - the clean filename contains the row's SKU
2. contains  - the clean filename contains the row's name, or vice versa
3. fuzzy     - best similarity score against every row name, if above the floor
4. none      - nothing cleared the floor

This is a greedy per-image assignment, not an optimal bipartite one: two
images may resolve to the same row. Images sharing a clean name
("plato-2.jpg", "plato-3.jpg") are grouped and only the primary is matched.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Sequence

import structlog

from config.settings import Settings
from exceptions import MatchIndexError
from models.catalog import (
    FeedRecord,
    ImageAsset,
    MatchConfidence,
    MatchType,
    ProductMatch,
)
from utils.similarity import similarity_score
from utils.text_utils import normalize_text

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MatchPolicy:
    """
    Tunable match thresholds.

    Defaults reproduce the thresholds the upload screen has always used;
    override them through Settings (MATCH_* env vars).
    """
    fuzzy_floor: int = 50
    contains_min_score: int = 80
    contains_max_score: int = 99
    min_contains_length: int = 3
    confidence_high: int = 90
    confidence_medium: int = 70

    @classmethod
    def from_settings(cls, settings: Settings) -> "MatchPolicy":
        return cls(
            fuzzy_floor=settings.match_fuzzy_floor,
            contains_min_score=settings.match_contains_min_score,
            contains_max_score=max(settings.match_contains_max_score, settings.match_contains_min_score),
            min_contains_length=settings.match_min_contains_length,
            confidence_high=settings.match_confidence_high,
            confidence_medium=settings.match_confidence_medium,
        )

    def confidence_for(self, match: ProductMatch) -> MatchConfidence:
        """Bucket a match score into high/medium/low/none."""
        if match.match_type == MatchType.NONE:
            return MatchConfidence.NONE
        if match.match_score >= self.confidence_high:
            return MatchConfidence.HIGH
        if match.match_score >= self.confidence_medium:
            return MatchConfidence.MEDIUM
        if match.match_score >= self.fuzzy_floor:
            return MatchConfidence.LOW
        return MatchConfidence.NONE


@dataclass(frozen=True)
class _Candidate:
    """Feed row with its comparison keys computed once per match() call."""
    index: int
    record: FeedRecord
    sku_key: str
    name_key: str


@dataclass
class MatchStats:
    """Counts shown above the match review table."""
    total: int = 0
    matched: int = 0
    unmatched: int = 0
    with_secondary: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


class MatchingService:
    """
    Image-to-feed-row matching.

    Pure and synchronous: never performs I/O and never raises from match().
    """

    def __init__(self, policy: Optional[MatchPolicy] = None):
        self.policy = policy or MatchPolicy()

    # ===================
    # MATCHING
    # ===================

    def match(
        self,
        images: Sequence[ImageAsset],
        feed: Sequence[FeedRecord],
    ) -> tuple[ProductMatch, ...]:
        """
        Match every primary image against the feed.

        Args:
            images: Uploaded images in upload order
            feed: Validated feed rows in file order (row order breaks ties)

        Returns:
            One ProductMatch per primary image, in upload order of the primaries
        """
        candidates = self._candidates(feed)
        groups = self.group_images(images)

        matches = []
        for primary, secondary in groups:
            record, match_type, score = self._best_match(primary.clean_name, candidates)
            matches.append(ProductMatch(
                image=primary,
                feed_record=record,
                match_type=match_type,
                match_score=score,
                secondary_images=tuple(secondary),
            ))

        stats = self.match_stats(matches)
        logger.info(
            "images_matched",
            images=len(images),
            feed_rows=len(feed),
            primaries=stats.total,
            matched=stats.matched,
            unmatched=stats.unmatched,
            by_type=stats.by_type
        )
        return tuple(matches)

    def find_match(
        self,
        clean_name: str,
        feed: Sequence[FeedRecord],
    ) -> tuple[Optional[FeedRecord], MatchType, int]:
        """
        Best feed row for a single clean name.

        Returns:
            (record, match_type, score); (None, NONE, 0) when nothing matches
        """
        return self._best_match(clean_name, self._candidates(feed))

    def _candidates(self, feed: Sequence[FeedRecord]) -> list[_Candidate]:
        return [
            _Candidate(
                index=i,
                record=record,
                sku_key=normalize_text(record.sku),
                name_key=normalize_text(record.name),
            )
            for i, record in enumerate(feed)
        ]

    def _best_match(
        self,
        clean_name: str,
        candidates: list[_Candidate],
    ) -> tuple[Optional[FeedRecord], MatchType, int]:
        if not clean_name or not candidates:
            return None, MatchType.NONE, 0

        exact = self._exact(clean_name, candidates)
        if exact is not None:
            return exact.record, MatchType.EXACT, 100

        contains = self._contains(clean_name, candidates)
        if contains is not None:
            candidate, score = contains
            return candidate.record, MatchType.CONTAINS, score

        fuzzy = self._fuzzy(clean_name, candidates)
        if fuzzy is not None:
            candidate, score = fuzzy
            return candidate.record, MatchType.FUZZY, score

        return None, MatchType.NONE, 0

    def _exact(self, clean_name: str, candidates: list[_Candidate]) -> Optional[_Candidate]:
        # Longest SKU wins so "a1" does not shadow "a10"; earliest row on ties
        best: Optional[_Candidate] = None
        for candidate in candidates:
            if not candidate.sku_key or candidate.sku_key not in clean_name:
                continue
            if best is None or len(candidate.sku_key) > len(best.sku_key):
                best = candidate
        return best

    def _contains(
        self,
        clean_name: str,
        candidates: list[_Candidate],
    ) -> Optional[tuple[_Candidate, int]]:
        policy = self.policy
        best: Optional[tuple[_Candidate, int]] = None

        for candidate in candidates:
            name = candidate.name_key
            if not name:
                continue
            shorter, longer = sorted((clean_name, name), key=len)
            if len(shorter) < policy.min_contains_length or shorter not in longer:
                continue

            ratio = len(shorter) / len(longer)
            span = policy.contains_max_score - policy.contains_min_score
            score = policy.contains_min_score + round(span * ratio)

            if best is None or score > best[1]:
                best = (candidate, score)

        return best

    def _fuzzy(
        self,
        clean_name: str,
        candidates: list[_Candidate],
    ) -> Optional[tuple[_Candidate, int]]:
        best: Optional[tuple[_Candidate, int]] = None

        for candidate in candidates:
            score = similarity_score(clean_name, candidate.name_key)
            # Strictly greater keeps the earliest row on equal scores
            if best is None or score > best[1]:
                best = (candidate, score)

        if best is None or best[1] < self.policy.fuzzy_floor:
            return None
        return best

    # ===================
    # SECONDARY IMAGES
    # ===================

    @staticmethod
    def group_images(
        images: Sequence[ImageAsset],
    ) -> list[tuple[ImageAsset, list[ImageAsset]]]:
        """
        Group images that share a clean name.

        The primary of a group is the image without an index suffix, else the
        lowest suffix, else the earliest upload. Images with an empty clean
        name are never grouped.

        Returns:
            [(primary, [secondary, ...]), ...] ordered by the primary's upload position
        """
        grouped: dict[str, list[tuple[int, ImageAsset]]] = {}
        singles: list[tuple[int, ImageAsset]] = []

        for position, image in enumerate(images):
            if image.clean_name:
                grouped.setdefault(image.clean_name, []).append((position, image))
            else:
                singles.append((position, image))

        def primary_key(entry: tuple[int, ImageAsset]) -> tuple[int, int, int]:
            position, image = entry
            if image.index_suffix is None:
                return (0, 0, position)
            return (1, image.index_suffix, position)

        result: list[tuple[int, ImageAsset, list[ImageAsset]]] = []
        for members in grouped.values():
            ordered = sorted(members, key=primary_key)
            primary_position, primary = ordered[0]
            secondary = [image for _, image in sorted(ordered[1:], key=lambda e: e[0])]
            result.append((primary_position, primary, secondary))

        result.extend((position, image, []) for position, image in singles)
        result.sort(key=lambda entry: entry[0])

        return [(primary, secondary) for _, primary, secondary in result]

    # ===================
    # MANUAL OVERRIDES
    # ===================

    def apply_manual_match(
        self,
        matches: Sequence[ProductMatch],
        image_index: int,
        feed_record: FeedRecord,
    ) -> tuple[ProductMatch, ...]:
        """
        Assign a feed row to one match by hand.

        Returns a new tuple with only the entry at `image_index` replaced;
        the input is never mutated. A manual match is always exact/100.

        Raises:
            MatchIndexError: If image_index is out of range
        """
        self._check_index(matches, image_index)

        current = matches[image_index]
        replaced = ProductMatch(
            image=current.image,
            feed_record=feed_record,
            match_type=MatchType.EXACT,
            match_score=100,
            secondary_images=current.secondary_images,
        )

        logger.info(
            "manual_match_applied",
            index=image_index,
            filename=current.image.filename,
            sku=feed_record.sku,
            previous_type=current.match_type.value,
            previous_score=current.match_score
        )
        return self._replace(matches, image_index, replaced)

    def clear_match(
        self,
        matches: Sequence[ProductMatch],
        image_index: int,
    ) -> tuple[ProductMatch, ...]:
        """
        Unassign the feed row of one match (e.g. a wrong auto-match).

        Raises:
            MatchIndexError: If image_index is out of range
        """
        self._check_index(matches, image_index)

        current = matches[image_index]
        replaced = ProductMatch(
            image=current.image,
            secondary_images=current.secondary_images,
        )

        logger.info("match_cleared", index=image_index, filename=current.image.filename)
        return self._replace(matches, image_index, replaced)

    @staticmethod
    def _check_index(matches: Sequence[ProductMatch], image_index: int) -> None:
        if not 0 <= image_index < len(matches):
            raise MatchIndexError(image_index, len(matches))

    @staticmethod
    def _replace(
        matches: Sequence[ProductMatch],
        image_index: int,
        replaced: ProductMatch,
    ) -> tuple[ProductMatch, ...]:
        updated = list(matches)
        updated[image_index] = replaced
        return tuple(updated)

    # ===================
    # STATS
    # ===================

    @staticmethod
    def match_stats(matches: Sequence[ProductMatch]) -> MatchStats:
        """Counts by outcome and by match type."""
        by_type = Counter(m.match_type.value for m in matches)
        matched = sum(1 for m in matches if m.is_matched)
        return MatchStats(
            total=len(matches),
            matched=matched,
            unmatched=len(matches) - matched,
            with_secondary=sum(1 for m in matches if m.secondary_images),
            by_type=dict(by_type),
        )


# Singleton instance for convenience
_matching_service: Optional[MatchingService] = None


def get_matching_service() -> MatchingService:
    """Get or create MatchingService instance using configured thresholds."""
    global _matching_service
    if _matching_service is None:
        from config.settings import get_settings
        _matching_service = MatchingService(MatchPolicy.from_settings(get_settings()))
    return _matching_service
