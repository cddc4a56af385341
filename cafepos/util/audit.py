import json
from sqlalchemy.orm import Session
from cafepos.context import RequestContext
from cafepos.models.core import AuditLog

def log_audit(db: Session, ctx: RequestContext, entity: str, entity_id: str, action: str,
              before: dict | None = None, after: dict | None = None, reason: str | None = None):
    """Stage an audit row in the caller's transaction (committed with the change it describes)."""
    entry = AuditLog(
        actor_user_id=ctx.user_id,
        entity=entity, entity_id=entity_id,
        action=action,
        reason=reason,
        before=json.dumps(before, default=str) if before else None,
        after=json.dumps(after, default=str) if after else None,
        request_id=ctx.request_id,
    )
    db.add(entry)
    return entry
