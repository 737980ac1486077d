"""Search history: per-user log of answered queries."""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class SearchHistoryStore:
    """Append-only list of search records, optionally mirrored to a JSON-lines file.

    Records are dicts with ``id``, ``userId``, ``query``, ``answer``, ``sources``,
    ``sourceCount``, ``confidence``, ``responseTime`` and ``createdAt``. Writes are serialized
    with a lock; a file that cannot be written only costs durability.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._records: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        if self.path is not None:
            self._records = self._load()

    def record(
        self,
        user_id: str,
        query: str,
        answer: str,
        sources: List[Dict[str, Any]],
        confidence: float,
        response_time_ms: int,
    ) -> Dict[str, Any]:
        entry = {
            "id": uuid.uuid4().hex,
            "userId": str(user_id),
            "query": query,
            "answer": answer,
            "sources": list(sources),
            "sourceCount": len(sources),
            "confidence": confidence,
            "responseTime": response_time_ms,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._records.append(entry)
            self._append_to_file(entry)
        return entry

    def for_user(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Newest-first records for one user."""
        with self._lock:
            matches = [r for r in self._records if r["userId"] == str(user_id)]
        return list(reversed(matches))[:limit]

    def stats(self, recent: int = 10) -> Dict[str, Any]:
        with self._lock:
            records = list(self._records)

        total = len(records)
        avg_response = sum(r.get("responseTime", 0) for r in records) / total if total else 0
        return {
            "totalSearches": total,
            "uniqueUsers": len({r["userId"] for r in records}),
            "avgResponseTime": round(avg_response, 1),
            "recentSearches": list(reversed(records))[:recent],
        }

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        records = []
        try:
            with open(self.path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except ValueError:
                        logger.warning(f"[HISTORY] Skipping malformed line in {self.path}")
                        continue
                    if not isinstance(record, dict) or "userId" not in record:
                        logger.warning(f"[HISTORY] Skipping record without userId in {self.path}")
                        continue
                    records.append(record)
        except OSError as e:
            logger.warning(f"[HISTORY] Could not read {self.path}: {e}")
        return records

    def _append_to_file(self, entry: Dict[str, Any]):
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.warning(f"[HISTORY] Could not write {self.path}: {e}")
