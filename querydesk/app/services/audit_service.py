from typing import Optional

from sqlmodel import Session

from querydesk.app.core.security import redact_secrets
from querydesk.app.models.audit import AuditLog

def log_action(
    session: Session,
    user_id: str,
    action: str,
    resource: str,
    resource_id: Optional[int] = None,
    details: Optional[str] = None,
) -> AuditLog:
    """Stage an audit entry on the session; the caller's commit persists it."""
    log = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=redact_secrets(details),
    )
    session.add(log)
    return log
