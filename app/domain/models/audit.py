"""Append-only change history embedded in a subscription."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class AuditEntry:
    field: str
    from_value: Any
    to_value: Any
    changed_at: datetime
    changed_by: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "from": self.from_value,
            "to": self.to_value,
            "changed_at": self.changed_at.isoformat(),
            "changed_by": self.changed_by,
        }


@dataclass(frozen=True, slots=True)
class AdminNote:
    note: str
    added_at: datetime
    added_by: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "note": self.note,
            "added_at": self.added_at.isoformat(),
            "added_by": self.added_by,
        }


@dataclass(frozen=True, slots=True)
class AuditLedger:
    """Immutable view over the ledger; extending it yields a new ledger."""

    changes: Tuple[AuditEntry, ...] = field(default_factory=tuple)
    notes: Tuple[AdminNote, ...] = field(default_factory=tuple)

    def extended(
        self,
        changes: Optional[List[AuditEntry]] = None,
        notes: Optional[List[AdminNote]] = None,
    ) -> "AuditLedger":
        return AuditLedger(
            changes=self.changes + tuple(changes or ()),
            notes=self.notes + tuple(notes or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changes": [entry.to_dict() for entry in self.changes],
            "notes": [note.to_dict() for note in self.notes],
        }


def audit_value(value: Any) -> Any:
    """Normalise a field value into the JSON scalar stored in the ledger."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


def make_entry(field_name: str, old: Any, new: Any, changed_at: datetime, actor: str) -> AuditEntry:
    return AuditEntry(
        field=field_name,
        from_value=audit_value(old),
        to_value=audit_value(new),
        changed_at=changed_at,
        changed_by=actor,
    )
