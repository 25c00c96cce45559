import logging

from sqlalchemy import or_

from extensions import db
from errors import NotFound, UpstreamError, ValidationFailed
from models import PDF_COMPLETED, PDF_FAILED, PDF_PENDING, PDF_PROCESSING, Source, User, skill_sources, utcnow
from queries import first_or_404
from queries.taxonomy import get_skill
from services import pdf_text, storage

logger = logging.getLogger(__name__)


def _visible(scope, query):
    """Shared sources plus the custom ones uploaded inside the caller's institution."""
    if scope.is_global:
        return query
    return query.outerjoin(User, Source.created_by == User.id).filter(
        or_(Source.is_custom.is_(False), User.institution_id == scope.institution_id)
    )


def list_sources(scope, skill_id=None):
    query = _visible(scope, db.session.query(Source))
    if skill_id:
        skill = get_skill(scope, skill_id)
        query = query.join(skill_sources, skill_sources.c.source_id == Source.id).filter(
            skill_sources.c.skill_id == skill.id
        )
    return query.order_by(Source.created_at.desc(), Source.id.desc()).all()


def get_source(scope, source_id):
    query = _visible(scope, db.session.query(Source)).filter(Source.id == source_id)
    return first_or_404(query, "Source not found")


def unlinked_sources(scope):
    linked = db.select(skill_sources.c.source_id)
    query = _visible(scope, db.session.query(Source)).filter(Source.id.notin_(linked))
    return query.order_by(Source.created_at.desc(), Source.id.desc()).all()


def create_source(scope, upload, title, authors=None, publication_year=None, skill_id=None):
    """Store ``upload`` (a werkzeug FileStorage) and register it as a pending source."""
    skill = get_skill(scope, skill_id) if skill_id else None
    data = upload.read()
    if not data:
        raise ValidationFailed("Uploaded file is empty.", field="pdf_file")
    source = Source(
        title=title,
        authors=authors or None,
        publication_year=publication_year,
        pdf_file_size=len(data),
        pdf_upload_date=utcnow(),
        pdf_processing_status=PDF_PENDING,
        is_custom=True,
        created_by=scope.user_id,
    )
    db.session.add(source)
    db.session.flush()
    key = storage.generate_key(upload.filename, source.id)
    try:
        storage.upload_file(data, key, upload.mimetype or "application/pdf")
    except storage.StorageError as exc:
        logger.exception("Upload of source %s failed", source.id)
        raise UpstreamError("Failed to upload file to storage") from exc
    source.pdf_s3_key = key
    if skill is not None:
        source.skills.append(skill)
    return source


def link_sources(scope, skill_id, source_ids):
    skill = get_skill(scope, skill_id)
    wanted = set(source_ids)
    sources = _visible(scope, db.session.query(Source)).filter(Source.id.in_(wanted)).all()
    if len(sources) != len(wanted):
        raise ValidationFailed("Some sources do not exist", field="source_ids")
    for source in sources:
        # re-linking is a no-op
        if source not in skill.sources:
            skill.sources.append(source)
    return skill, len(sources)


def unlink_source(scope, skill_id, source_id):
    skill = get_skill(scope, skill_id)
    source = next((s for s in skill.sources if s.id == source_id), None)
    if source is None:
        raise NotFound("Source is not linked to this skill")
    skill.sources.remove(source)


def delete_source(scope, source_id):
    """Drop the rows and hand back the object key still to be removed from storage."""
    source = get_source(scope, source_id)
    key = source.pdf_s3_key
    source.skills.clear()
    db.session.delete(source)
    return key


def download_url(scope, source_id):
    source = get_source(scope, source_id)
    if not source.pdf_s3_key:
        raise NotFound("Source has no file attached")
    try:
        return source, storage.generate_presigned_url(source.pdf_s3_key)
    except storage.StorageError as exc:
        logger.exception("Presigning source %s failed", source.id)
        raise UpstreamError("Failed to generate download URL") from exc


def process_source(source):
    """Advance one source through pending -> processing -> completed/failed."""
    source.pdf_processing_status = PDF_PROCESSING
    db.session.commit()
    try:
        blob = storage.download_file(source.pdf_s3_key)
        extracted = pdf_text.extract_text(blob)
    except (storage.StorageError, pdf_text.ExtractionError) as exc:
        logger.warning("Processing source %s failed: %s", source.id, exc)
        source.pdf_processing_status = PDF_FAILED
        db.session.commit()
        return False
    source.pdf_text = extracted.text
    source.pdf_page_count = extracted.page_count
    source.pdf_processing_status = PDF_COMPLETED
    db.session.commit()
    return True


def process_pending(limit=None):
    query = (
        db.session.query(Source)
        .filter(Source.pdf_processing_status == PDF_PENDING, Source.pdf_s3_key.isnot(None))
        .order_by(Source.created_at, Source.id)
    )
    if limit:
        query = query.limit(limit)
    completed = failed = 0
    for source in query.all():
        if process_source(source):
            completed += 1
        else:
            failed += 1
    return completed, failed
