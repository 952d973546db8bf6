from flask import Blueprint, current_app
from sqlalchemy import text

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON, including DB reachability."""
    engine = current_app.extensions["sqlalchemy_engine"]
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        current_app.logger.exception("Health check DB probe failed")
        db_ok = False
    return {"ok": db_ok, "db": db_ok}, (200 if db_ok else 503)


@bp.get("/healthz")
def healthz():
    """
    Fast liveness probe. No DB access, minimal overhead.
    """
    return "ok", 200
