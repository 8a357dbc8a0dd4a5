"""
Rolling history of liveability scores.

HistoryRetentionManager merges the current run into the previous series and
applies the retention window and the length cap. JsonHistoryStore reads and
writes the persisted `history.json` document.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from schemas import HistoryPayload, HistoryPoint

logger = logging.getLogger(__name__)


class HistoryRetentionManager:
    """Bounded, time-ordered score series"""

    def __init__(self, retention_days: int, points_per_day: int):
        if retention_days < 1:
            raise ValueError("retention_days must be >= 1")
        if points_per_day < 1:
            raise ValueError("points_per_day must be >= 1")
        self.retention_days = retention_days
        self.points_per_day = points_per_day

    @property
    def max_points(self) -> int:
        return self.points_per_day * self.retention_days

    def merge(self, previous_points: Sequence[HistoryPoint], new_point: HistoryPoint, now: datetime) -> List[HistoryPoint]:
        """
        Append `new_point` and trim the series.

        Keeps points no older than `retention_days` before `now`, then the
        newest `max_points` of those, ascending by timestamp.
        """
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = now - timedelta(days=self.retention_days)

        points = list(previous_points) + [new_point]
        points.sort(key=lambda point: point.timestamp_utc)
        kept = [point for point in points if point.timestamp_utc >= cutoff]

        dropped = len(points) - len(kept)
        if len(kept) > self.max_points:
            dropped += len(kept) - self.max_points
            kept = kept[-self.max_points:]

        if dropped:
            logger.debug(f"History trimmed by {dropped} points (retention {self.retention_days}d, cap {self.max_points})")
        return kept


class JsonHistoryStore:
    """`history.json` on local disk"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load_points(self) -> List[HistoryPoint]:
        """
        Previous series, or an empty one when the file is missing or unreadable.

        Individual points that fail to parse are skipped.
        """
        if not self.path.exists():
            logger.info(f"No previous history at {self.path}; starting a new series")
            return []

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable history file {self.path}: {e}")
            return []

        raw_points = document.get("points") if isinstance(document, dict) else None
        if not isinstance(raw_points, list):
            logger.warning(f"Ignoring history file {self.path} without a points list")
            return []

        points: List[HistoryPoint] = []
        skipped = 0
        for raw in raw_points:
            point = self._parse_point(raw)
            if point is None:
                skipped += 1
                continue
            points.append(point)

        if skipped:
            logger.warning(f"Skipped {skipped} malformed history points in {self.path}")
        return points

    @staticmethod
    def _parse_point(raw: Any) -> Optional[HistoryPoint]:
        try:
            return HistoryPoint.model_validate(raw)
        except ValidationError:
            return None

    def save(self, payload: HistoryPayload) -> None:
        write_json(self.path, payload.model_dump(mode="json", by_alias=True))


def write_json(path: Path, data: Any) -> None:
    """Pretty-printed JSON with a trailing newline; NaN and Infinity are rejected"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(data, indent=2, ensure_ascii=False, allow_nan=False)
    path.write_text(text + "\n", encoding="utf-8")
