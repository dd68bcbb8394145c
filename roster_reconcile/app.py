"""
Roster Reconciliation Service
Flask application factory and development entry point.
"""

import atexit
import os
import time
from typing import Any, Callable, Dict, Optional

from flask import Flask, request

from roster_reconcile import config
from roster_reconcile.api.roster_endpoints import roster_bp
from roster_reconcile.extensions import limiter
from roster_reconcile.services.reconciliation_service import ReconciliationService
from roster_reconcile.services.retention import RetentionScheduler
from roster_reconcile.services.session_store import SessionStore
from roster_reconcile.utils.error_handlers import register_error_handlers
from roster_reconcile.utils.monitoring import register_monitoring_routes
from roster_reconcile.utils.request_logging import register_request_logging
from roster_reconcile.utils.security import generate_security_headers
from roster_reconcile.utils.structured_logger import StructuredLogger, configure_logging

logger = StructuredLogger("roster_reconcile.app")


def _register_security_headers(app: Flask):

    @app.after_request
    def after_request(response):
        """Add security headers and CORS support."""
        if app.config["CORS_ENABLED"]:
            origin = request.headers.get("Origin")
            allowed = app.config["ALLOWED_ORIGINS"]
            if origin and (origin in allowed or "*" in allowed):
                response.headers["Access-Control-Allow-Origin"] = origin
                response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
                response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
                response.headers["Access-Control-Allow-Credentials"] = "true"

        for header, value in generate_security_headers().items():
            response.headers.setdefault(header, value)
        return response


def create_app(overrides: Optional[Dict[str, Any]] = None,
               clock: Callable[[], float] = time.time) -> Flask:
    """
    Build the application.

    ``overrides`` is applied on top of the environment configuration;
    ``clock`` drives session ages and is replaced by a fake in tests.
    """
    configure_logging()

    app = Flask(__name__)
    app.config.update(config.as_flask_config())
    app.config.setdefault("RATELIMIT_STORAGE_URI", "memory://")
    if overrides:
        app.config.update(overrides)

    for folder in (app.config["UPLOAD_FOLDER"], app.config["EXTRACT_FOLDER"], app.config["OUTPUT_FOLDER"]):
        os.makedirs(folder, exist_ok=True)

    store = SessionStore(retention_seconds=app.config["RETENTION_SECONDS"], clock=clock)
    app.extensions["roster_reconcile"] = ReconciliationService(
        store,
        extract_dir=app.config["EXTRACT_FOLDER"],
        output_dir=app.config["OUTPUT_FOLDER"],
        document_extension=app.config["DOCUMENT_EXTENSION"],
        archive_encoding=app.config["ARCHIVE_FILENAME_ENCODING"],
        archive_extensions=app.config["ARCHIVE_ALLOWED_EXTENSIONS"],
        roster_extensions=app.config["ROSTER_ALLOWED_EXTENSIONS"],
        max_excel_rows=app.config["MAX_EXCEL_ROWS"],
    )

    limiter.init_app(app)
    app.register_blueprint(roster_bp)
    register_error_handlers(app)
    register_request_logging(app)
    register_monitoring_routes(app)
    _register_security_headers(app)

    if app.config["CLEANUP_ENABLED"]:
        scheduler = RetentionScheduler(
            store,
            directories=[app.config["UPLOAD_FOLDER"], app.config["EXTRACT_FOLDER"], app.config["OUTPUT_FOLDER"]],
            interval_seconds=app.config["CLEANUP_INTERVAL_SECONDS"],
        )
        scheduler.start()
        atexit.register(scheduler.stop)
        app.extensions["roster_reconcile_retention"] = scheduler

    logger.info("Application created", context={
        "upload_folder": app.config["UPLOAD_FOLDER"],
        "extract_folder": app.config["EXTRACT_FOLDER"],
        "output_folder": app.config["OUTPUT_FOLDER"],
        "cleanup_enabled": app.config["CLEANUP_ENABLED"],
    })
    return app


if __name__ == "__main__":
    create_app().run(host=config.FLASK_HOST, port=config.FLASK_PORT, debug=config.FLASK_DEBUG)
