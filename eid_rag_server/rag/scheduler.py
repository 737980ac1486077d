"""Background driver for recurring ingestion runs."""

import logging
import threading
from typing import Any, Callable

from .config import RAGConfig
from .models import IngestStats

logger = logging.getLogger(__name__)


class IngestionScheduler:
    """Runs ingestion shortly after start and then on a fixed interval.

    At most one run is in flight: a trigger that arrives while a run holds
    the busy lock is skipped, not queued. Run failures are logged and never
    stop later runs. The lock is in-memory, which is only correct for a
    single-process deployment.
    """

    def __init__(
        self,
        run_ingest: Callable[[], IngestStats],
        config: RAGConfig,
        server_config=None,
    ):
        """Initialize the scheduler.

        Args:
            run_ingest: Callable performing one ingestion run
            config: RAG configuration (enable flags, startup delay, interval)
            server_config: ServerConfig used to check Gemini/Qdrant credentials
        """
        self.run_ingest = run_ingest
        self.config = config
        self.server_config = server_config

        self._busy = threading.Lock()
        self._stop = threading.Event()
        self._startup_timer: threading.Timer | None = None
        self._interval_thread: threading.Thread | None = None
        self._started = False
        self.last_stats: IngestStats | None = None
        self.last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._busy.locked()

    def start(self) -> dict[str, Any]:
        """Schedule the startup run and the interval loop when ingestion is possible.

        Returns:
            Status dict with ``started`` and either ``reason`` or the schedule
        """
        if self._started:
            return {"started": True, "reason": "already started"}

        if not self.config.auto_index:
            logger.info("[RAG-INDEX] disabled (RAG_AUTO_INDEX=false)")
            return {"started": False, "reason": "RAG_AUTO_INDEX=false"}

        if self.server_config is not None:
            if not self.server_config.GEMINI_API_KEY:
                logger.info("[RAG-INDEX] skipped (GEMINI_API_KEY missing)")
                return {"started": False, "reason": "GEMINI_API_KEY missing"}
            if not self.server_config.QDRANT_URL:
                logger.info("[RAG-INDEX] skipped (QDRANT_URL missing)")
                return {"started": False, "reason": "QDRANT_URL missing"}

        self._started = True
        self._stop.clear()

        if self.config.ingest_on_startup:
            self._startup_timer = threading.Timer(self.config.startup_delay, self.run_once, args=("startup",))
            self._startup_timer.daemon = True
            self._startup_timer.start()

        interval = self.config.interval_seconds
        if interval:
            self._interval_thread = threading.Thread(
                target=self._interval_loop, args=(interval,), name="rag-ingest-interval", daemon=True
            )
            self._interval_thread.start()

        logger.info(
            f"[RAG-INDEX] scheduler started (startup run: {self.config.ingest_on_startup}, interval: {interval}s)"
        )
        return {"started": True, "interval_seconds": interval, "run_on_startup": self.config.ingest_on_startup}

    def stop(self):
        """Cancel the pending startup run and end the interval loop."""
        self._stop.set()
        if self._startup_timer is not None:
            self._startup_timer.cancel()
        self._started = False

    def trigger(self, reason: str = "manual") -> bool:
        """Start a run in a background thread.

        Returns:
            False if a run is already in progress (nothing is started)
        """
        if self.is_running:
            logger.info(f"[RAG-INDEX] run skipped ({reason}): another run is in progress")
            return False
        threading.Thread(target=self.run_once, args=(reason,), name="rag-ingest-manual", daemon=True).start()
        return True

    def run_once(self, reason: str = "manual") -> IngestStats | None:
        """Run ingestion unless a run is already in progress.

        Args:
            reason: Label for logs ("startup", "interval", "manual")

        Returns:
            Run statistics, or None when skipped or failed
        """
        if not self._busy.acquire(blocking=False):
            logger.info(f"[RAG-INDEX] run skipped ({reason}): another run is in progress")
            return None

        try:
            logger.info(f"[RAG-INDEX] run start ({reason})")
            stats = self.run_ingest()
            self.last_stats = stats
            self.last_error = None
            logger.info(f"[RAG-INDEX] run done ({reason}): {stats.to_dict()}")
            return stats
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"[RAG-INDEX] run failed ({reason}): {e} {describe_failure(e)}")
            return None
        finally:
            self._busy.release()

    def _interval_loop(self, interval: float):
        while not self._stop.wait(interval):
            self.run_once("interval")


def describe_failure(error: Exception) -> str:
    """Format HTTP status, retry hint and body preview attached to upstream errors."""
    parts = []
    status = getattr(error, "status", None)
    if status is not None:
        status_text = getattr(error, "status_text", "")
        parts.append(f"status={status}{f' {status_text}' if status_text else ''}")
    retry_after = getattr(error, "retry_after_seconds", None)
    if retry_after is not None:
        parts.append(f"retryAfterSeconds={retry_after}")
    body = getattr(error, "body", None)
    if isinstance(body, str) and body:
        parts.append(f"body: {body[:400]}")
    return " ".join(parts)
