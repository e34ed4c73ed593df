from sqlalchemy.orm import Session

from ..models import AuditLog


def record_audit(db: Session, org_id: str, action: str, target: str | None = None,
                 meta: dict | None = None, actor_id: str | None = None) -> AuditLog:
    """Stage an audit row on the session; the caller owns the commit."""
    entry = AuditLog(org_id=org_id, actor_id=actor_id, action=action, target=target, meta=meta or {})
    db.add(entry)
    return entry
