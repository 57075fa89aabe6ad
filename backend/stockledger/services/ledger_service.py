# Overview: Service-layer operations for the audit ledger; appends and reads LedgerEvent rows.

from __future__ import annotations

import json
from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import LedgerEvent
"""
Audit Ledger Invariants (authoritative)

- Append-only audit log for document transitions (purchase orders, sales
  orders, adjustments) and manual stock moves.
- No domain/business logic in the audit ledger itself.
- Events are written inside the same DB transaction as the transition they
  record, so a rolled-back transition leaves no event behind.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    org_id: int | None = None,
    actor_user_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload=None,
) -> LedgerEvent:
    """
    Append an audit event without committing.

    payload may be a dict (stored as JSON) or a preformatted string.
    """
    if payload is not None and not isinstance(payload, str):
        payload = json.dumps(payload, sort_keys=True, default=str)

    ev = LedgerEvent(
        org_id=org_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note[:255] if note else None,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_ledger_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    org_id: int | None = None,
    limit: int = 100,
) -> list[LedgerEvent]:
    """Most recent events first."""
    q = db.session.query(LedgerEvent)
    if entity_type is not None:
        q = q.filter(LedgerEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(LedgerEvent.entity_id == entity_id)
    if org_id is not None:
        q = q.filter(LedgerEvent.org_id == org_id)
    return q.order_by(LedgerEvent.id.desc()).limit(limit).all()
