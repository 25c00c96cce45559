import logging
import time

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from formatters import iso
from models import utcnow
from services import grading

logger = logging.getLogger(__name__)

bp = Blueprint("health", __name__, url_prefix="/api")

STARTED_AT = time.monotonic()


@bp.route("/health", methods=["GET"])
def health():
    payload = {"timestamp": iso(utcnow()), "uptime": round(time.monotonic() - STARTED_AT, 3)}
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        db.session.rollback()
        return jsonify({**payload, "status": "error", "database": "disconnected"}), 503
    return jsonify({**payload, "status": "ok", "database": "connected"})


@bp.route("/ai/health", methods=["GET"])
def ai_health():
    try:
        result = grading.probe()
    except grading.GradingError as exc:
        logger.warning("AI health check failed: %s", exc)
        return jsonify({"status": "error", "error": "AI service unavailable"}), 503
    return jsonify({"status": "ok", "model": result["model"], "timestamp": iso(utcnow())})
