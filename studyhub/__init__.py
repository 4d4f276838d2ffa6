# studyhub/__init__.py
"""Flask application factory and extension initialization."""

from __future__ import annotations

import logging
import os
from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_apscheduler import APScheduler
from flask_bcrypt import Bcrypt
from flask_mail import Mail
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR

from config import get_config
from studyhub.utils.clock import utcnow
from studyhub.utils.event_bus import EventBus

# ---------------------------------------------------------------------------
# Extension instances (singletons that will be imported elsewhere)
# ---------------------------------------------------------------------------

db = SQLAlchemy()
mail = Mail()
bcrypt = Bcrypt()
scheduler = APScheduler()
event_bus = EventBus()

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_app(test_config: dict | None = None):
    """Application factory used by run.py and WSGI servers."""

    load_dotenv()

    app = Flask(__name__)

    # Config
    app.config.from_object(get_config())
    if test_config is not None:
        app.config.update(test_config)

    # Logging defaults
    app.logger.setLevel(logging.DEBUG if app.debug else logging.INFO)
    logging.getLogger("studyhub").setLevel(logging.DEBUG if app.debug else logging.INFO)

    # ---------------------------------------------------------------------
    # Extension init
    # ---------------------------------------------------------------------
    db.init_app(app)
    mail.init_app(app)
    bcrypt.init_app(app)

    # APScheduler is the worker pool for post-commit side effects
    app.config.setdefault("SCHEDULER_API_ENABLED", False)

    def _log_scheduler_event(job_event):  # noqa: ANN001
        """Write a concise log line for every APScheduler job completion/error."""
        if getattr(job_event, "exception", False):
            app.logger.error("Scheduler job %s failed: %s", job_event.job_id, job_event.exception)
        else:
            app.logger.debug("Scheduler job %s executed successfully.", job_event.job_id)

    # The scheduler is a process-wide singleton; configure it only once.
    # Inline dispatch (tests, scripts) never hands work to it.
    if app.config.get("EVENT_DISPATCH_MODE") != "inline" and not scheduler.running:
        scheduler.init_app(app)
        scheduler.add_listener(_log_scheduler_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        scheduler.start()

    # ---------------------------------------------------------------------
    # Domain event handlers - registered explicitly, once per process
    # ---------------------------------------------------------------------
    from studyhub.services import worker
    from studyhub.services.notification_dispatcher import register_handlers

    event_bus.clear()
    event_bus.use_submitter(worker.submit)
    register_handlers(event_bus)
    app.logger.info("Registered domain event handlers: %s", event_bus.describe())

    # ---------------------------------------------------------------------
    # Database bootstrap - inside app context
    # ---------------------------------------------------------------------
    with app.app_context():
        from studyhub import models  # noqa: F401  register mappers

        uri = app.config["SQLALCHEMY_DATABASE_URI"]
        if uri.startswith("sqlite:///") and ":memory:" not in uri:
            os.makedirs(os.path.dirname(uri.replace("sqlite:///", "", 1)) or ".", exist_ok=True)

        db.create_all()

        # Sanity query so we fail fast if DB unreachable
        db.session.execute(text("SELECT 1"))

    # ---------------------------------------------------------------------
    # Error handlers & health
    # ---------------------------------------------------------------------
    @app.errorhandler(500)
    def _500(e):  # noqa: D401
        logger.error("Unhandled 500: %s", e, exc_info=True)
        return jsonify({"error": "Internal Server Error"}), 500

    @app.route("/health")
    def _health():
        return {"status": "ok", "timestamp": utcnow().isoformat()}, 200

    return app
