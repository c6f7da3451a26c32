from flask import Blueprint, current_app
from sqlalchemy import text

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON and pings the database."""
    engine = current_app.extensions["sqlalchemy_engine"]
    db_ok = True
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        current_app.logger.error("Health check DB ping failed: %s", e)
        db_ok = False
    return {"ok": db_ok, "db": db_ok}, (200 if db_ok else 503)


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s probes. No DB access, minimal overhead.
    """
    return "ok", 200
