# manual_rag/application/deduplication.py

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from manual_rag.domain.interfaces import KeyValueStorePort
from manual_rag.domain.models import (
    ContentFingerprint,
    DuplicateCheckResult,
    ExtractedSummary,
)
from manual_rag.infrastructure.chunker import extract_point_codes
from manual_rag.infrastructure.file_hasher import rolling_hash


logger = logging.getLogger(__name__)


FINGERPRINTS_KEY = "fingerprints"
FILE_HASH_PREFIX_LENGTH = 1000

# The split and thresholds are inherited heuristics, kept adjustable.
POINT_COUNT_WEIGHT = 50
PROTOCOL_COUNT_WEIGHT = 30
NAME_WEIGHT = 20
SIMILARITY_THRESHOLD = 80
OVERLAP_THRESHOLD = 50

NAME_TOKEN_SPLIT = re.compile(r"[\s_\-.]+")


class DeduplicationManager:
    """
    Fingerprints uploads and flags likely duplicates before import.

    Checks run in priority order and stop at the first hit:
        1. identical file hash            → exact_file
        2. identical content hash         → similar_content (100)
        3. similarity above threshold     → similar_content
        4. point overlap above threshold  → overlapping_protocols
        5. otherwise                      → none

    Purely advisory: the caller decides whether to import and, if so,
    calls store() with the returned fingerprint.
    """

    def __init__(
        self,
        storage: KeyValueStorePort,
        point_count_weight: int = POINT_COUNT_WEIGHT,
        protocol_count_weight: int = PROTOCOL_COUNT_WEIGHT,
        name_weight: int = NAME_WEIGHT,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        overlap_threshold: float = OVERLAP_THRESHOLD,
    ):
        self._storage = storage
        self._point_count_weight = point_count_weight
        self._protocol_count_weight = protocol_count_weight
        self._name_weight = name_weight
        self._similarity_threshold = similarity_threshold
        self._overlap_threshold = overlap_threshold

    def fingerprint(
        self,
        file_name: str,
        text: str,
        extracted_summary: Optional[ExtractedSummary] = None,
    ) -> ContentFingerprint:
        if extracted_summary is not None:
            point_codes = extracted_summary.all_points()
            protocol_count = len(extracted_summary.protocols)
        else:
            point_codes = extract_point_codes(text)
            protocol_count = 0

        return ContentFingerprint(
            file_hash=rolling_hash(file_name + text[:FILE_HASH_PREFIX_LENGTH]),
            content_hash=rolling_hash(text),
            file_name=file_name,
            upload_date=datetime.now(timezone.utc).isoformat(),
            extracted_point_count=len(point_codes),
            protocol_count=protocol_count,
            point_codes=point_codes,
        )

    def check_duplicate(
        self,
        file_name: str,
        text: str,
        extracted_summary: Optional[ExtractedSummary] = None,
    ) -> DuplicateCheckResult:
        candidate = self.fingerprint(file_name, text, extracted_summary)
        existing = self.list()

        exact = next((fp for fp in existing if fp.file_hash == candidate.file_hash), None)
        if exact is not None:
            return DuplicateCheckResult(
                is_duplicate=True,
                duplicate_type="exact_file",
                similarity=100,
                recommendations=[
                    "This exact file has been uploaded before",
                    f"Previous upload: {exact.upload_date[:10]}",
                    "Skip upload to avoid duplicates",
                ],
                fingerprint=candidate,
                existing=exact,
            )

        renamed = next((fp for fp in existing if fp.content_hash == candidate.content_hash), None)
        if renamed is not None:
            return DuplicateCheckResult(
                is_duplicate=True,
                duplicate_type="similar_content",
                similarity=100,
                recommendations=[
                    f"Identical content already uploaded as: {renamed.file_name}",
                    f"Previous upload: {renamed.upload_date[:10]}",
                    "Skip upload to avoid duplicates",
                ],
                fingerprint=candidate,
                existing=renamed,
            )

        for fp in existing:
            similarity = self.calculate_similarity(candidate, fp)
            if similarity > self._similarity_threshold:
                return DuplicateCheckResult(
                    is_duplicate=True,
                    duplicate_type="similar_content",
                    similarity=similarity,
                    recommendations=[
                        f"{similarity}% similar to existing content: {fp.file_name}",
                        "Consider reviewing for overlapping information",
                        "You may want to merge or skip duplicate protocols",
                    ],
                    fingerprint=candidate,
                    existing=fp,
                )

        overlap, overlapping_points = self.protocol_overlap(candidate, existing)
        if overlap > self._overlap_threshold:
            return DuplicateCheckResult(
                is_duplicate=True,
                duplicate_type="overlapping_protocols",
                similarity=overlap,
                recommendations=[
                    f"{overlap}% protocol overlap detected",
                    f"Overlapping points: {', '.join(overlapping_points[:5])}",
                    "Consider selective import to avoid duplicate protocols",
                ],
                fingerprint=candidate,
            )

        return DuplicateCheckResult(
            is_duplicate=False,
            duplicate_type="none",
            similarity=0,
            recommendations=[
                "New content detected",
                "Safe to import all extracted protocols",
                "No significant duplicates found",
            ],
            fingerprint=candidate,
        )

    def store(self, fingerprint: ContentFingerprint) -> None:
        records = self._storage.get(FINGERPRINTS_KEY) or []
        records.append(fingerprint.to_record())
        self._storage.set(FINGERPRINTS_KEY, records)
        logger.info("[Deduplication] Content fingerprint stored for '%s'.", fingerprint.file_name)

    def list(self) -> List[ContentFingerprint]:
        records = self._storage.get(FINGERPRINTS_KEY) or []
        return [ContentFingerprint.from_record(r) for r in records]

    def has_file_hash(self, file_hash: str) -> bool:
        return any(fp.file_hash == file_hash for fp in self.list())

    def clear(self) -> None:
        self._storage.delete(FINGERPRINTS_KEY)
        logger.info("[Deduplication] All fingerprints cleared.")

    def duplicate_stats(self) -> dict:
        fingerprints = self.list()
        unique_contents = {fp.content_hash for fp in fingerprints}
        return {
            "total_uploads": len(fingerprints),
            "unique_documents": len(unique_contents),
            "duplicate_uploads": len(fingerprints) - len(unique_contents),
        }

    # ─── Scoring ─────────────────────────────────────────────────────────────

    def calculate_similarity(self, a: ContentFingerprint, b: ContentFingerprint) -> int:
        # Two documents with nothing extracted are not evidence of a match.
        same_points = a.extracted_point_count == b.extracted_point_count and a.extracted_point_count > 0
        same_protocols = a.protocol_count == b.protocol_count and a.protocol_count > 0
        point_score = self._point_count_weight if same_points else 0
        protocol_score = self._protocol_count_weight if same_protocols else 0
        name_score = self._name_similarity(a.file_name, b.file_name)
        return min(100, point_score + protocol_score + name_score)

    def protocol_overlap(
        self,
        candidate: ContentFingerprint,
        existing: List[ContentFingerprint],
    ) -> tuple[float, List[str]]:
        """Share of the candidate's point codes already present in stored fingerprints."""
        if not candidate.point_codes:
            return 0.0, []

        known = {code for fp in existing for code in fp.point_codes}
        overlapping = [code for code in candidate.point_codes if code in known]
        percentage = round(len(overlapping) / len(candidate.point_codes) * 100, 2)
        return percentage, overlapping

    def _name_similarity(self, name_a: str, name_b: str) -> int:
        words_a = [w for w in NAME_TOKEN_SPLIT.split(name_a.lower()) if w]
        words_b = [w for w in NAME_TOKEN_SPLIT.split(name_b.lower()) if w]
        total = len(set(words_a) | set(words_b))
        if total == 0:
            return 0
        common = len(set(words_a) & set(words_b))
        return round(common / total * self._name_weight)
