"""
Deduplication utilities for insight bullets and transcript payloads.

The analysis engine tends to repeat itself ("Budget approval pending" and
"Budget approval is still pending."), so pain points and next steps are
collapsed before they are stored on an analysis record.
"""

import hashlib
import re
from typing import Iterable, Optional

from dealflow_sync.utils.logger import get_logger

logger = get_logger("cascade")


class DuplicateDetector:
    """
    Detects duplicate or near-duplicate insight bullets.

    Two bullets are duplicates when, after normalization, they:
    - are identical,
    - one contains the other, or
    - their significant-word Jaccard similarity reaches the threshold.
    """

    def __init__(
        self,
        similarity_threshold: float = 0.8,
        min_word_length: int = 3,
    ):
        """
        Initialize the duplicate detector.

        Args:
            similarity_threshold: Jaccard similarity at which bullets are duplicates.
            min_word_length: Words shorter than this are ignored for similarity.
        """
        self.similarity_threshold = similarity_threshold
        self.min_word_length = min_word_length

        logger.debug(
            f"DuplicateDetector initialized with threshold={similarity_threshold}"
        )

    def _normalize_text(self, text: str) -> str:
        """Normalize text for comparison."""
        normalized = text.lower().strip()
        normalized = re.sub(r"[.,!?;:'\"]", "", normalized)
        normalized = re.sub(r"\s+", " ", normalized)
        return normalized

    def _get_word_set(self, text: str) -> set[str]:
        """Extract significant unique words from text."""
        return {
            word
            for word in self._normalize_text(text).split()
            if len(word) >= self.min_word_length
        }

    def calculate_content_hash(self, content: str) -> str:
        """
        Calculate a normalized hash for content.

        Args:
            content: The text content to hash.

        Returns:
            SHA-256 hash of normalized content.
        """
        normalized = self._normalize_text(content)
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    def calculate_similarity(self, text1: str, text2: str) -> float:
        """
        Calculate Jaccard similarity between the significant words of two texts.

        Two texts without any significant words are treated as identical.

        Returns:
            Similarity score from 0.0 to 1.0.
        """
        words1 = self._get_word_set(text1)
        words2 = self._get_word_set(text2)

        if not words1 and not words2:
            return 1.0

        union = words1 | words2
        return len(words1 & words2) / len(union)

    def is_duplicate(
        self,
        text1: str,
        text2: str,
        threshold: Optional[float] = None,
    ) -> bool:
        """Check whether two bullets say the same thing."""
        threshold = self.similarity_threshold if threshold is None else threshold

        normalized1 = self._normalize_text(text1)
        normalized2 = self._normalize_text(text2)

        if normalized1 == normalized2:
            return True

        shorter, longer = sorted((normalized1, normalized2), key=len)
        if shorter and shorter in longer:
            return True

        return self.calculate_similarity(text1, text2) >= threshold

    def deduplicate(self, items: Iterable[str]) -> list[str]:
        """
        Remove duplicates from a list of bullets.

        Keeps the first occurrence of each unique bullet, trimmed.
        Empty bullets are dropped.

        Args:
            items: Bullets to deduplicate.

        Returns:
            Deduplicated bullets in original order.
        """
        items = list(items or [])
        unique: list[str] = []

        for item in items:
            trimmed = item.strip()
            if not trimmed:
                continue

            if any(self.is_duplicate(existing, trimmed) for existing in unique):
                logger.debug(f"Removing duplicate bullet: {trimmed[:60]}")
                continue

            unique.append(trimmed)

        removed_count = len(items) - len(unique)
        if removed_count > 0:
            logger.debug(f"Removed {removed_count} duplicates from {len(items)} bullets")

        return unique

    def merge(self, existing: Iterable[str], new_items: Iterable[str]) -> list[str]:
        """Merge two bullet lists, keeping existing entries first."""
        return self.deduplicate([*(existing or []), *(new_items or [])])


def get_segments_fingerprint(parts: Iterable[str]) -> str:
    """
    Generate a stable fingerprint for an ordered sequence of text parts.

    Used to tell whether a re-fetched transcript is the same segment set
    that is already stored.
    """
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
        digest.update(b"\x1f")
    return digest.hexdigest()
