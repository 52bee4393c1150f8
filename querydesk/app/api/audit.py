from fastapi import APIRouter, Depends
from sqlmodel import Session, select, func, col
from typing import Optional, Dict, Any
from querydesk.app.core.db import get_session
from querydesk.app.core.identity import get_current_user
from querydesk.app.models.audit import AuditLog

router = APIRouter(prefix="/audit", tags=["audit"])

@router.get("/", response_model=Dict[str, Any])
def get_audit_logs(
    skip: int = 0,
    limit: int = 100,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    resource_id: Optional[int] = None,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    # Callers only see their own trail
    query = select(AuditLog).where(AuditLog.user_id == user_id)
    if action:
        query = query.where(AuditLog.action == action)
    if resource:
        query = query.where(AuditLog.resource == resource)
    if resource_id is not None:
        query = query.where(AuditLog.resource_id == resource_id)

    count_query = select(func.count()).select_from(query.subquery())
    total = session.exec(count_query).one()

    query = query.order_by(col(AuditLog.timestamp).desc(), col(AuditLog.id).desc()).offset(skip).limit(limit)
    items = session.exec(query).all()

    return {"items": items, "total": total}
