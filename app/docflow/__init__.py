import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from app.docflow.config import is_production_env, load_config
from app.docflow.db import init_db, teardown_db_session
from app.docflow.models import Base  # noqa: F401  (registers every table on Base.metadata)
from app.docflow.errors import ConcurrentModification, WorkflowError
from app.docflow.routes import bp as routes_bp
from app.docflow.auth import bp as auth_bp, load_current_user
from app.docflow.modules.documents.admin import bp as documents_bp
from app.docflow.modules.workflow.admin import bp as workflows_bp
from app.docflow.modules.ledger.admin import bp as ledger_bp
from app.docflow.modules.verification.public import bp as public_bp
from app.docflow.modules.users.admin import bp as users_bp
from app.docflow.modules.integrity.vault import SignatureVault
from app.docflow.security import ensure_csrf_token, validate_csrf
from app.docflow.storage import StorageError

logger = logging.getLogger(__name__)

# Endpoints reachable without a CSRF token (login bootstrap, anonymous verification).
_CSRF_EXEMPT_PREFIXES = ("auth.", "public.")


def _rollback_request_session() -> None:
    s = getattr(g, "db_session", None)
    if s is not None:
        s.rollback()


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # Production guardrails (fail fast with clear logs)
    if is_production_env(app.config.get("ENV")):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    # Raises ConfigError when no key is provisioned (see modules/integrity/vault.py).
    app.extensions["signature_vault"] = SignatureVault.from_config(app.config)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if (request.endpoint or "").startswith(_CSRF_EXEMPT_PREFIXES):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "csrf", "message": "CSRF token missing or invalid."}), 400
        return None

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(documents_bp, url_prefix="/api")
    app.register_blueprint(workflows_bp, url_prefix="/api")
    app.register_blueprint(ledger_bp, url_prefix="/api")
    app.register_blueprint(public_bp, url_prefix="/api")
    app.register_blueprint(users_bp, url_prefix="/api")

    @app.errorhandler(WorkflowError)
    def _workflow_error(e: WorkflowError):
        _rollback_request_session()
        rid = getattr(g, "request_id", None)
        if e.opaque:
            app.logger.exception("%s (request_id=%s context=%s)", e.code, rid, e.context)
        else:
            app.logger.warning("%s: %s (request_id=%s)", e.code, e.message, rid)
        body = e.to_dict()
        if isinstance(e, ConcurrentModification):
            body["retryable"] = True
        return jsonify(body), e.status_code

    @app.errorhandler(StorageError)
    def _storage_error(e: StorageError):
        _rollback_request_session()
        app.logger.exception("Storage fault (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "storage_error", "message": "Operation failed."}), 500

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        if e.code == 403:
            missing = getattr(g, "missing_role", None)
            if missing:
                app.logger.warning("Forbidden: required_role=%s request_id=%s", missing, getattr(g, "request_id", None))
        name = (e.name or "error").lower().replace(" ", "_")
        return jsonify({"error": name, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        _rollback_request_session()
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500

    logger.info("create_app() complete; app ready to serve")
    return app
