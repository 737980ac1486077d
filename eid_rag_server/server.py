"""Flask API server exposing the knowledge search service."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Annotated, Any, Callable, Dict, List, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError

from .backends import check_gemini_health
from .config import ServerConfig
from .rag.retriever import DisallowedURLError
from .rag.scheduler import IngestionScheduler
from .rag.service import RAGService

logger = logging.getLogger(__name__)

UserResolver = Callable[[Any], Optional[Dict[str, Any]]]


class SearchRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    query: str = Field(min_length=3, max_length=500)


class AnswerRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    query: str = Field(min_length=3, max_length=500)
    urls: List[Annotated[str, StringConstraints(strip_whitespace=True, min_length=8, max_length=2048)]] = Field(
        min_length=1, max_length=10
    )


class RelatedRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    topic: str = Field(min_length=2, max_length=200)


def validation_errors(error: ValidationError) -> List[Dict[str, str]]:
    """Flatten pydantic errors into ``[{field, message}]``."""
    return [
        {"field": ".".join(str(part) for part in err["loc"]) or "body", "message": err["msg"]}
        for err in error.errors()
    ]


def anonymous_user(_request) -> Optional[Dict[str, Any]]:
    return None


class RAGServer:
    """Flask server answering questions from trusted Islamic knowledge sources."""

    def __init__(
        self,
        name: str,
        service: RAGService,
        config: ServerConfig,
        scheduler: Optional[IngestionScheduler] = None,
        user_resolver: Optional[UserResolver] = None,
        logger_names: Optional[List[str]] = None,
    ):
        """Initialize the knowledge API server.

        Args:
            name: Display name for the server
            service: RAGService answering queries
            config: ServerConfig instance
            scheduler: Optional ingestion scheduler started by ``run()``
            user_resolver: Maps a Flask request to ``{"id", "role"}`` or None for anonymous callers
            logger_names: Optional list of logger names for debug logging
        """
        self.name = name
        self.service = service
        self.config = config
        self.scheduler = scheduler
        self.user_resolver = user_resolver or anonymous_user

        # Create Flask app
        self.app = Flask(name.lower())
        CORS(self.app)

        logger_names = logger_names or ["eid_rag_server"]
        if config.DEBUG_LOG:
            log_file = Path(config.DEBUG_LOG_FILE)
            # Use RotatingFileHandler for automatic log rotation
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=config.DEBUG_LOG_MAX_BYTES,
                backupCount=config.DEBUG_LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setLevel(logging.DEBUG)

            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
            file_handler.setFormatter(formatter)

            for logger_name in logger_names:
                logger_obj = logging.getLogger(logger_name)
                logger_obj.setLevel(logging.DEBUG)
                logger_obj.addHandler(file_handler)

            max_mb = config.DEBUG_LOG_MAX_BYTES / (1024 * 1024)
            print(f"Debug logging enabled: {log_file.absolute()}")
            print(f"  Logging: {', '.join(logger_names)}")
            print(f"  Rotation: {max_mb:.1f}MB max, {config.DEBUG_LOG_BACKUP_COUNT} backups")

        # Register routes
        self._register_routes()

    def _register_routes(self):
        """Register Flask routes."""
        self.app.route("/health", methods=["GET"])(self.health)
        self.app.route("/api/rag/search", methods=["POST"])(self.search)
        self.app.route("/api/rag/answer", methods=["POST"])(self.answer)
        self.app.route("/api/rag/related", methods=["POST"])(self.related)
        self.app.route("/api/rag/history", methods=["GET"])(self.history)
        self.app.route("/api/rag/cache", methods=["DELETE"])(self.clear_cache)
        self.app.route("/api/rag/stats", methods=["GET"])(self.stats)
        self.app.route("/api/rag/ingest", methods=["POST"])(self.ingest)

    def current_user(self) -> Optional[Dict[str, Any]]:
        try:
            return self.user_resolver(request)
        except Exception as e:
            logger.warning(f"[SERVER] User resolver failed: {e}")
            return None

    def _require_admin(self):
        """Return an error response unless the caller is an admin, else None."""
        user = self.current_user()
        if not user:
            return jsonify({"message": "Access token required"}), 401
        if user.get("role") != "admin":
            return jsonify({"message": "Admin access required"}), 403
        return None

    def _error(self, message: str, error: Exception, status: int = 500):
        body = {"message": message}
        if self.config.EXPOSE_ERRORS:
            body["error"] = str(error)
        return jsonify(body), status

    def _parse(self, model):
        """Validate the JSON body; returns (parsed, None) or (None, 400 response)."""
        try:
            return model.model_validate(request.get_json(silent=True) or {}), None
        except ValidationError as e:
            return None, (jsonify({"message": "Validation failed", "errors": validation_errors(e)}), 400)

    def check_backend_health(self) -> bool:
        """Check if the Gemini backend is reachable.

        Returns:
            True if backend is healthy, False otherwise
        """
        is_healthy, message = check_gemini_health(self.config, timeout=self.config.HEALTH_CHECK_TIMEOUT)
        if is_healthy:
            print(f"✓ {message}")
        else:
            print(f"✗ {message}")
        return is_healthy

    def health(self):
        """Health check endpoint."""
        return jsonify(
            {
                "status": "healthy",
                "model": self.config.GEMINI_CHAT_MODEL,
                "vectorSearch": bool(self.config.QDRANT_URL),
                "retriever": self.service.retriever.config.retriever_mode,
            }
        )

    def search(self):
        """Answer a query from the knowledge base."""
        body, error_response = self._parse(SearchRequest)
        if error_response:
            return error_response

        user = self.current_user() or {}
        try:
            result = self.service.search(body.query, user_id=user.get("id"))
        except Exception as e:
            logger.error(f"[SERVER] Search error: {e}")
            return self._error("Failed to search knowledge", e)
        return jsonify({"success": True, "data": result.to_dict()})

    def answer(self):
        """Answer a query from caller-supplied pages on trusted domains."""
        body, error_response = self._parse(AnswerRequest)
        if error_response:
            return error_response

        user = self.current_user() or {}
        try:
            result = self.service.answer_from_urls(body.query, body.urls, user_id=user.get("id"))
        except DisallowedURLError as e:
            return jsonify({"message": str(e), "allowedDomains": e.allowed_domains}), 400
        except Exception as e:
            logger.error(f"[SERVER] Answer-from-URLs error: {e}")
            return self._error("Failed to answer from URLs", e)
        return jsonify({"success": True, "data": result.to_dict()})

    def related(self):
        """Suggest follow-up questions for a topic."""
        body, error_response = self._parse(RelatedRequest)
        if error_response:
            return error_response

        try:
            questions = self.service.related_questions(body.topic)
        except Exception as e:
            logger.error(f"[SERVER] Related questions error: {e}")
            return self._error("Failed to get related questions", e)
        return jsonify({"success": True, "data": questions})

    def history(self):
        """Last 20 searches of the calling user."""
        user = self.current_user()
        if not user or not user.get("id"):
            return jsonify({"message": "Access token required"}), 401

        try:
            records = self.service.history_for(user["id"], limit=20)
        except Exception as e:
            logger.error(f"[SERVER] Search history error: {e}")
            return self._error("Failed to get search history", e)
        return jsonify({"success": True, "data": records})

    def clear_cache(self):
        denied = self._require_admin()
        if denied:
            return denied

        self.service.clear_cache()
        return jsonify({"success": True, "message": "Cache cleared successfully"})

    def stats(self):
        denied = self._require_admin()
        if denied:
            return denied

        try:
            data = self.service.stats()
        except Exception as e:
            logger.error(f"[SERVER] Stats error: {e}")
            return self._error("Failed to get RAG statistics", e)

        if self.scheduler is not None:
            last = self.scheduler.last_stats
            data["indexing"] = {
                "running": self.scheduler.is_running,
                "lastRun": last.to_dict() if last else None,
                "lastError": self.scheduler.last_error,
            }
        return jsonify({"success": True, "data": data})

    def ingest(self):
        """Start an ingestion run in the background."""
        denied = self._require_admin()
        if denied:
            return denied

        if self.scheduler is None:
            return jsonify({"message": "Ingestion is not configured"}), 503
        if not self.scheduler.trigger("api"):
            return jsonify({"message": "Ingestion already in progress"}), 409
        return jsonify({"success": True, "message": "Ingestion started"}), 202

    def run(self, port: Optional[int] = None, host: Optional[str] = None, debug: bool = False):
        """Run the Flask server.

        Args:
            port: Port to run on (defaults to config.DEFAULT_PORT)
            host: Host to bind to (defaults to config.DEFAULT_HOST, which is 127.0.0.1 for security)
            debug: Enable debug mode
        """
        port = port or self.config.DEFAULT_PORT
        host = host or self.config.DEFAULT_HOST

        print(
            f"""
╭────────────────────────────────────╮
│  {self.name} - Knowledge Search API   │
╰────────────────────────────────────╯

Model: {self.config.GEMINI_CHAT_MODEL}
Vector search: {'enabled' if self.config.QDRANT_URL else 'disabled (QDRANT_URL not set)'}
Host: {host}
Port: {port}
API: http://localhost:{port}/api/rag
"""
        )

        # Security warning if binding to all interfaces
        if host == "0.0.0.0":
            print("⚠️  WARNING: Server is binding to 0.0.0.0 (all network interfaces)")
            print("   This exposes the API to your entire network.")
            print("   For security, use HOST=127.0.0.1 (localhost only) unless you need network access.\n")

        # Check backend health if enabled
        if self.config.HEALTH_CHECK_ON_STARTUP:
            print("Checking backend health...")
            if not self.check_backend_health():
                print("\n⚠️  Warning: Backend health check failed!")
                print("The server will start anyway, but requests may fail.")
                print("To disable this check, set HEALTH_CHECK_ON_STARTUP=false\n")

        if self.scheduler is not None:
            status = self.scheduler.start()
            if not status.get("started"):
                print(f"Background indexing not started: {status.get('reason')}")

        # Reloader off: its child process would start a second scheduler
        self.app.run(host=host, port=port, debug=debug, use_reloader=False)
