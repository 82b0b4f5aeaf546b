"""Audit trail for mutating API actions."""

from __future__ import annotations

import json
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.models.crm_audit import CrmAuditLog


async def log_audit(
    session: AsyncSession,
    user_id: Optional[int],
    entity: str,
    entity_id: Any,
    action: str,
    details: Optional[dict[str, Any]] = None,
    remote_addr: Optional[str] = None,
) -> CrmAuditLog:
    """Stage an audit row on ``session``; it lands with the caller's commit."""

    row = CrmAuditLog(
        user_id=user_id,
        entity=entity,
        # order refs are strings, customer/segment/campaign ids are ints
        entity_id=None if entity_id is None else str(entity_id),
        action=action,
        details=None if details is None else json.dumps(details, default=str),
        remote_addr=remote_addr,
    )
    session.add(row)
    return row
