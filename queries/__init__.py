"""Data access helpers shared by every area of the API.

Functions in this package read and stage writes on ``db.session``; the route
that called them owns the single ``commit`` of the request.
"""
import math

from extensions import db
from errors import Conflict, NotFound

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def get_or_404(model, ident, message=None):
    obj = db.session.get(model, ident)
    if obj is None:
        raise NotFound(message or f"{model.__name__} not found")
    return obj


def first_or_404(query, message):
    obj = query.first()
    if obj is None:
        raise NotFound(message)
    return obj


def ensure_unique(query, message):
    """Pre-read uniqueness check; ``query`` should select the id column only."""
    if query.first() is not None:
        raise Conflict(message)


def page_args(args):
    try:
        page = max(int(args.get("page", 1)), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(args.get("limit", DEFAULT_PAGE_SIZE))
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_SIZE
    return page, min(max(limit, 1), MAX_PAGE_SIZE)


def paginate(query, page, limit):
    total = query.order_by(None).count()
    items = query.limit(limit).offset((page - 1) * limit).all()
    meta = {
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "currentPage": page,
        "limit": limit,
    }
    return items, meta


def like(term):
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
