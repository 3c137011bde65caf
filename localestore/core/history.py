"""
Detection history store: an append-only, capped log of automatic locale
detections with a read-only query and statistics layer.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from .cache import TTLCache
from .errors import ValidationError
from .persistence import PersistenceAdapter
from .types import BackendTarget, DetectionRecord, StorageKeys, StorageResult
from .validators import validate_detection_record
from ..config import Settings, get_settings
from ..utils.storage_utils import current_timestamp

logger = logging.getLogger(__name__)

CACHE_PREFIX = "history:"
SORT_FIELDS = ("timestamp", "confidence", "locale", "source")
HOUR_MS = 60 * 60 * 1000


class DetectionHistoryStore:
    """Manages the detection log in the local backend."""

    def __init__(
        self,
        adapter: PersistenceAdapter,
        cache: Optional[TTLCache] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.adapter = adapter
        self.settings = settings or get_settings()
        self._clock = clock or current_timestamp
        self.cache = cache or TTLCache(self.settings.cache_ttl_ms, clock=self._clock)

    # ---- persistence ------------------------------------------------------

    def _load(self) -> List[DetectionRecord]:
        result = self.adapter.get(StorageKeys.LOCALE_DETECTION_HISTORY, BackendTarget.LOCAL)
        if not result.success or not isinstance(result.data, dict):
            return []
        detections = result.data.get("detections")
        if not isinstance(detections, list):
            return []

        records = []
        for item in detections:
            try:
                records.append(validate_detection_record(item, self.settings.supported_locales))
            except ValidationError as e:
                logger.warning(f"Skipping invalid stored detection: {e}")
        return records

    def _store(self, records: List[DetectionRecord]) -> StorageResult:
        records = sorted(records, key=lambda record: record.timestamp)
        records = records[-self.settings.max_detection_history:]
        document = {
            "detections": [record.to_dict() for record in records],
            "lastUpdated": self._clock(),
        }
        result = self.adapter.set(StorageKeys.LOCALE_DETECTION_HISTORY, document, BackendTarget.LOCAL)
        self.cache.invalidate_pattern(CACHE_PREFIX)
        return result

    def add_record(self, detection: Any) -> StorageResult:
        """
        Append a detection, dropping the oldest records past the cap.

        Args:
            detection: DetectionRecord or mapping; a missing timestamp is filled with now

        Returns:
            ok(DetectionRecord) or fail() with the validation/storage error
        """
        if isinstance(detection, dict) and detection.get("timestamp") is None:
            detection = {**detection, "timestamp": self._clock()}
        try:
            record = validate_detection_record(detection, self.settings.supported_locales)
        except ValidationError as e:
            logger.warning(f"Rejected detection record: {e}")
            return StorageResult.fail(e)

        records = self._load()
        records.append(record)
        result = self._store(records)
        if not result.success:
            return result
        logger.debug(f"Recorded detection {record.locale} from {record.source}")
        return StorageResult.ok(record, source=result.source)

    def replace(self, records: List[DetectionRecord]) -> StorageResult:
        result = self._store(records)
        if not result.success:
            return result
        return StorageResult.ok(min(len(records), self.settings.max_detection_history))

    def get_history(self) -> List[DetectionRecord]:
        """All retained detections, oldest first."""
        return sorted(self._load(), key=lambda record: record.timestamp)

    def get_history_document(self) -> Optional[Dict[str, Any]]:
        result = self.adapter.get(StorageKeys.LOCALE_DETECTION_HISTORY, BackendTarget.LOCAL)
        if not result.success or not isinstance(result.data, dict):
            return None
        return result.data

    def get_recent(self, limit: int = 5) -> List[DetectionRecord]:
        """Most recent detections, newest first."""
        if limit <= 0:
            return []
        return sorted(self._load(), key=lambda record: record.timestamp, reverse=True)[:limit]

    # ---- queries ----------------------------------------------------------

    def query_by_source(self, source: str) -> List[DetectionRecord]:
        return [record for record in self.get_history() if record.source == source]

    def query_by_locale(self, locale: str) -> List[DetectionRecord]:
        return [record for record in self.get_history() if record.locale == locale]

    def query_by_time_range(self, start: int, end: int) -> List[DetectionRecord]:
        return [record for record in self.get_history() if start <= record.timestamp <= end]

    def query_by_confidence(self, minimum: float, maximum: float = 1.0) -> List[DetectionRecord]:
        return [record for record in self.get_history() if minimum <= record.confidence <= maximum]

    def query(
        self,
        locale: Optional[str] = None,
        source: Optional[str] = None,
        sort_by: str = "timestamp",
        sort_order: str = "desc",
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Filter, sort and paginate detections.

        Returns:
            Dict with records, total_count (matches before pagination) and has_more
        """
        if sort_by not in SORT_FIELDS:
            raise ValueError(f"sort_by must be one of {SORT_FIELDS}, got {sort_by!r}")
        if sort_order not in ("asc", "desc"):
            raise ValueError(f"sort_order must be 'asc' or 'desc', got {sort_order!r}")

        records = self.get_history()
        if locale is not None:
            records = [record for record in records if record.locale == locale]
        if source is not None:
            records = [record for record in records if record.source == source]

        records.sort(key=lambda record: getattr(record, sort_by), reverse=sort_order == "desc")

        total = len(records)
        offset = max(0, offset)
        end = total if limit is None else offset + max(0, limit)
        page = records[offset:end]
        return {"records": page, "total_count": total, "has_more": end < total}

    def search(self, term: str) -> List[DetectionRecord]:
        """Case-insensitive match against locale, source and metadata keys/values."""
        needle = (term or "").strip().lower()
        if not needle:
            return []

        matches = []
        for record in self.get_history():
            haystack = [record.locale, record.source]
            for key, value in record.metadata.items():
                haystack.extend([str(key), str(value)])
            if any(needle in item.lower() for item in haystack):
                matches.append(record)
        return matches

    def get_unique_locales(self) -> List[str]:
        return sorted({record.locale for record in self._load()})

    def get_unique_sources(self) -> List[str]:
        return sorted({record.source for record in self._load()})

    # ---- statistics -------------------------------------------------------

    def _frame(self, records: List[DetectionRecord]) -> pd.DataFrame:
        return pd.DataFrame(
            [{"locale": r.locale, "source": r.source, "confidence": r.confidence, "timestamp": r.timestamp}
             for r in records],
            columns=["locale", "source", "confidence", "timestamp"],
        )

    def _group_stats(self, column: str) -> List[Dict[str, Any]]:
        cache_key = f"{CACHE_PREFIX}{column}_group_stats"
        cached = self.cache.get_cached(cache_key)
        if cached is not None:
            return cached

        df = self._frame(self._load())
        if df.empty:
            return []

        total = len(df)
        grouped = (
            df.groupby(column)
            .agg(count=("confidence", "size"), average_confidence=("confidence", "mean"))
            .reset_index()
            .sort_values(["count", column], ascending=[False, True])
        )
        stats = [
            {
                column: str(row[column]),
                "count": int(row["count"]),
                "percentage": round(int(row["count"]) / total * 100, 2),
                "average_confidence": round(float(row["average_confidence"]), 4),
            }
            for _, row in grouped.iterrows()
        ]
        self.cache.set_cached(cache_key, stats)
        return stats

    def get_locale_group_stats(self) -> List[Dict[str, Any]]:
        return self._group_stats("locale")

    def get_source_group_stats(self) -> List[Dict[str, Any]]:
        return self._group_stats("source")

    def get_time_distribution_stats(self, bucket_ms: int = HOUR_MS) -> List[Dict[str, Any]]:
        """Histogram of detection counts per fixed-width time bucket, oldest bucket first."""
        if bucket_ms <= 0:
            raise ValueError("bucket_ms must be positive")

        df = self._frame(self._load())
        if df.empty:
            return []

        buckets = (df["timestamp"] // bucket_ms) * bucket_ms
        counts = buckets.value_counts().sort_index()
        return [
            {"bucket_start": int(start), "bucket_end": int(start) + bucket_ms, "count": int(count)}
            for start, count in counts.items()
        ]

    def get_summary(self) -> Dict[str, Any]:
        records = self.get_history()
        if not records:
            return {
                "total_records": 0,
                "unique_locales": 0,
                "unique_sources": 0,
                "oldest_timestamp": None,
                "newest_timestamp": None,
                "average_confidence": 0.0,
            }
        df = self._frame(records)
        return {
            "total_records": len(records),
            "unique_locales": int(df["locale"].nunique()),
            "unique_sources": int(df["source"].nunique()),
            "oldest_timestamp": records[0].timestamp,
            "newest_timestamp": records[-1].timestamp,
            "average_confidence": round(float(df["confidence"].mean()), 4),
        }

    # ---- cleanup ----------------------------------------------------------

    def cleanup_expired(self, max_age_ms: int) -> StorageResult:
        """Drop detections older than max_age_ms; data is the number removed."""
        records = self._load()
        cutoff = self._clock() - max_age_ms
        kept = [record for record in records if record.timestamp > cutoff]
        removed = len(records) - len(kept)
        if removed == 0:
            return StorageResult.ok(0)

        result = self._store(kept)
        if not result.success:
            return result
        logger.info(f"Cleaned up {removed} expired detections")
        return StorageResult.ok(removed)

    def cleanup_duplicates(self) -> StorageResult:
        records = self._load()
        seen = set()
        unique = []
        for record in records:
            identity = (record.locale, record.source, record.timestamp, record.confidence)
            if identity not in seen:
                seen.add(identity)
                unique.append(record)
        removed = len(records) - len(unique)
        if removed == 0:
            return StorageResult.ok(0)

        result = self._store(unique)
        if not result.success:
            return result
        logger.info(f"Removed {removed} duplicate detections")
        return StorageResult.ok(removed)

    def limit_size(self, max_records: int) -> StorageResult:
        records = self.get_history()
        if len(records) <= max_records:
            return StorageResult.ok(0)
        result = self._store(records[len(records) - max_records:])
        if not result.success:
            return result
        return StorageResult.ok(len(records) - max_records)

    def clear(self) -> StorageResult:
        result = self.adapter.remove(StorageKeys.LOCALE_DETECTION_HISTORY, BackendTarget.LOCAL)
        self.cache.invalidate_pattern(CACHE_PREFIX)
        return result
