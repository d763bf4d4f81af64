from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment.core.security import Actor
from fulfillment.persistence.models import LoadAuditModel


def record_load_audit(
    session: Session,
    load_id: str,
    action: str,
    actor: Actor,
    changes: dict[str, Any],
    reason: str | None = None,
) -> LoadAuditModel:
    row = LoadAuditModel(
        load_id=load_id,
        action=action,
        actor_type=actor.type,
        actor_id=actor.id,
        changes=changes,
        reason=reason,
    )
    session.add(row)
    return row


def list_load_audit(session: Session, load_id: str) -> list[LoadAuditModel]:
    session.flush()
    stmt = select(LoadAuditModel).where(LoadAuditModel.load_id == load_id).order_by(LoadAuditModel.id.asc())
    return list(session.scalars(stmt).all())
