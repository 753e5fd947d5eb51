"""
Audit logging service.
Append-only audit log with integrity hashing.

Writers never commit: the entry is inserted inside a SAVEPOINT on the
caller's session, so it commits together with the mutation it describes.
A failed insert rolls back only the savepoint and is reported as a warning.
"""
import csv
import hashlib
import io
import json
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Dict, Any, List, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import ilike_contains
from ..logging import get_logger
from ..models.models import AuditLog, CompanyLog, User, utcnow

log = get_logger("companysync.audit")

CSV_HEADER = ["ID", "User", "Action", "Details", "CreatedAt"]
MAX_PAGE_SIZE = 200


def compute_integrity_hash(
    actor_id: Optional[int],
    action: str,
    details: Optional[Dict[str, Any]],
    created_at: datetime,
    secret: Optional[str] = None,
) -> str:
    """SHA256 over the canonical JSON of the entry, salted with `secret`."""
    if secret is None:
        secret = settings.jwt_secret
    canonical = {
        "actor_id": actor_id,
        "action": action,
        "details": details,
        "created_at": created_at.isoformat(),
    }
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def verify_integrity(entry: AuditLog, secret: Optional[str] = None) -> bool:
    if not entry.integrity_hash:
        return False
    expected = compute_integrity_hash(entry.user_id, entry.action, entry.details, entry.created_at, secret)
    return expected == entry.integrity_hash


def _append(db: Session, row, kind: str) -> Optional[Any]:
    try:
        with db.begin_nested():
            db.add(row)
            db.flush()
    except SQLAlchemyError as e:
        log.warning("audit.write_failed", kind=kind, action=row.action, error=str(e))
        return None
    return row


def record(
    db: Session,
    actor_id: Optional[int],
    action: str,
    details: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """
    Append an admin audit entry.

    Args:
        db: Session holding the mutation being audited
        actor_id: Acting user, None for system actions
        action: Action tag (ban_user, delete_company, ...)
        details: JSON-serializable metadata

    Returns:
        The pending AuditLog, or None if the write failed
    """
    created_at = utcnow()
    entry = AuditLog(
        user_id=actor_id,
        action=action,
        details=details,
        created_at=created_at,
        integrity_hash=compute_integrity_hash(actor_id, action, details, created_at),
    )
    return _append(db, entry, "admin")


def record_company(
    db: Session,
    company_id: int,
    actor_id: Optional[int],
    action: str,
    meta: Optional[Dict[str, Any]] = None,
) -> Optional[CompanyLog]:
    """Append a company activity entry; same transactional contract as `record`."""
    entry = CompanyLog(company_id=company_id, user_id=actor_id, action=action, meta=meta, created_at=utcnow())
    return _append(db, entry, "company")


def parse_bound(value: Optional[str]) -> Optional[Union[date, datetime]]:
    """Parse a `from`/`to` query value: a date (YYYY-MM-DD) or an ISO datetime."""
    if not value:
        return None
    value = value.strip()
    if len(value) == 10:
        return date.fromisoformat(value)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def end_of(value: Union[date, datetime]) -> datetime:
    # A bare date as upper bound covers the whole day
    if isinstance(value, datetime):
        return value
    return datetime.combine(value + timedelta(days=1), time.min) - timedelta(microseconds=1)


def start_of(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _filtered(
    db: Session,
    user: Optional[str],
    action: Optional[str],
    date_from: Optional[Union[date, datetime]],
    date_to: Optional[Union[date, datetime]],
):
    query = db.query(AuditLog, User.username).outerjoin(User, AuditLog.user_id == User.id)
    if user:
        query = query.filter(ilike_contains(User.username, user))
    if action:
        query = query.filter(ilike_contains(AuditLog.action, action))
    if date_from:
        query = query.filter(AuditLog.created_at >= start_of(date_from))
    if date_to:
        query = query.filter(AuditLog.created_at <= end_of(date_to))
    return query


def query_logs(
    db: Session,
    user: Optional[str] = None,
    action: Optional[str] = None,
    date_from: Optional[Union[date, datetime]] = None,
    date_to: Optional[Union[date, datetime]] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[dict], int]:
    """
    Filtered, paginated read of the admin audit log.

    Returns (rows, total) where rows are newest first and total counts the
    whole filtered set.
    """
    page = max(1, page)
    page_size = min(max(1, page_size), MAX_PAGE_SIZE)
    query = _filtered(db, user, action, date_from, date_to)

    total = query.count()
    rows = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return [_log_to_dict(entry, username) for entry, username in rows], total


def export_logs(
    db: Session,
    user: Optional[str] = None,
    action: Optional[str] = None,
    date_from: Optional[Union[date, datetime]] = None,
    date_to: Optional[Union[date, datetime]] = None,
) -> List[dict]:
    """Full filtered set, same ordering as `query_logs`, no pagination."""
    query = _filtered(db, user, action, date_from, date_to)
    rows = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).all()
    return [_log_to_dict(entry, username) for entry, username in rows]


def _log_to_dict(entry: AuditLog, username: Optional[str]) -> dict:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "user": username,
        "action": entry.action,
        "details": entry.details,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def logs_to_csv(rows: List[dict]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\r\n")
    writer.writerow(CSV_HEADER)
    for r in rows:
        writer.writerow([
            r["id"],
            r.get("user") or "",
            r["action"],
            json.dumps(r.get("details") or {}),
            r.get("created_at") or "",
        ])
    return buf.getvalue()


def list_company_logs(db: Session, company_id: int, limit: int = 100) -> List[dict]:
    rows = (
        db.query(CompanyLog, User.username)
        .outerjoin(User, CompanyLog.user_id == User.id)
        .filter(CompanyLog.company_id == company_id)
        .order_by(CompanyLog.created_at.desc(), CompanyLog.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": entry.id,
            "action": entry.action,
            "meta": entry.meta,
            "user_id": entry.user_id,
            "username": username,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry, username in rows
    ]


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": before_val, "after": after_val}
    return diff
