from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Tuple

from ...domain.durations import add_duration, parse_unit
from ...domain.errors import NotFoundError, ValidationError
from ...domain.models import AdminNote, AuditEntry, PaymentStatus, Subscription, SubscriptionStatus
from ...domain.models.audit import make_entry
from ...domain.ports.persistence import SubscriptionRepository
from ...domain.status import StatusSnapshot, compute_status

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SubscriptionPatch:
    """Operator-requested changes; ``None`` means the field is absent."""

    status: Optional[Any] = None
    payment_status: Optional[Any] = None
    start_date: Optional[Any] = None
    end_date: Optional[Any] = None
    is_latest: Optional[bool] = None
    historical_article_limit: Optional[Any] = None
    notes: Optional[str] = None
    extend_duration: Optional[Any] = None
    extend_unit: Optional[Any] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SubscriptionPatch":
        """Build a patch, dropping keys that are not patchable."""
        known = {item.name for item in dataclasses.fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass(slots=True)
class UpdateResult:
    subscription: Subscription
    changes: List[AuditEntry]
    snapshot: StatusSnapshot


def parse_moment(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        try:
            moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Invalid {field_name}: {value!r}.") from exc
    else:
        raise ValidationError(f"Invalid {field_name}: {value!r}.")
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _parse_enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value.value if isinstance(value, enum_cls) else str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_cls)
        raise ValidationError(f"Invalid {field_name} {value!r}; expected one of: {allowed}.") from exc


def _parse_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer.")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be an integer.") from exc
    if number != value and not isinstance(value, str):
        raise ValidationError(f"{field_name} must be an integer.")
    if number < 0:
        raise ValidationError(f"{field_name} must not be negative.")
    return number


def apply_update(
    subscription: Subscription,
    patch: SubscriptionPatch,
    actor: str,
    now: datetime,
    *,
    strict_extend_unit: bool = True,
) -> Tuple[Subscription, List[AuditEntry], List[AdminNote]]:
    """Apply ``patch`` to a copy of ``subscription``.

    Validation happens before anything is built, so a rejected patch leaves no
    trace. Fields are applied in a fixed order; the extension runs after the
    direct date fields and therefore wins over an explicit ``end_date``. The
    stored status only changes when the patch names it.
    """
    status = _parse_enum(SubscriptionStatus, patch.status, "status") if patch.status is not None else None
    payment_status = (
        _parse_enum(PaymentStatus, patch.payment_status, "payment status")
        if patch.payment_status is not None
        else None
    )
    start_date = parse_moment(patch.start_date, "start date") if patch.start_date is not None else None
    end_date = parse_moment(patch.end_date, "end date") if patch.end_date is not None else None
    limit = (
        _parse_non_negative_int(patch.historical_article_limit, "historical article limit")
        if patch.historical_article_limit is not None
        else None
    )
    note: Optional[str] = None
    if patch.notes is not None:
        if not isinstance(patch.notes, str) or not patch.notes.strip():
            raise ValidationError("Notes must be non-empty text.")
        note = patch.notes.strip()
    if patch.is_latest is not None and not isinstance(patch.is_latest, bool):
        raise ValidationError("is_latest must be a boolean.")

    extension: Optional[Tuple[int, Any]] = None
    if patch.extend_duration is not None or patch.extend_unit is not None:
        if patch.extend_duration is None or patch.extend_unit is None:
            raise ValidationError("extend_duration and extend_unit must be supplied together.")
        amount = _parse_non_negative_int(patch.extend_duration, "extend duration")
        unit = parse_unit(patch.extend_unit)
        if unit is None:
            if strict_extend_unit:
                raise ValidationError(f"Unknown extend unit {patch.extend_unit!r}.")
            logger.info(
                "Ignoring extension of subscription %s with unknown unit %r.",
                subscription.id,
                patch.extend_unit,
            )
        elif subscription.end_date is None:
            raise ValidationError(f"Subscription {subscription.id} has no valid end date to extend.")
        else:
            extension = (amount, unit)

    changes: List[AuditEntry] = []
    updates: dict = {}

    def record(field_name: str, old: Any, new: Any) -> None:
        changes.append(make_entry(field_name, old, new, now, actor))

    if status is not None:
        record("status", subscription.status, status)
        updates["status"] = status
    if payment_status is not None:
        record("payment_status", subscription.payment_status, payment_status)
        updates["payment_status"] = payment_status
    if start_date is not None:
        record("start_date", subscription.start_date, start_date)
        updates["start_date"] = start_date
    if end_date is not None:
        record("end_date", subscription.end_date, end_date)
        updates["end_date"] = end_date
    if extension is not None:
        amount, unit = extension
        extended = add_duration(subscription.end_date, amount, unit)
        record("extension", subscription.end_date, extended)
        updates["end_date"] = extended
    if patch.is_latest is not None:
        record("is_latest", subscription.is_latest, patch.is_latest)
        updates["is_latest"] = patch.is_latest
    if limit is not None:
        record("historical_article_limit", subscription.historical_article_limit, limit)
        updates["historical_article_limit"] = limit

    notes: List[AdminNote] = []
    if note is not None:
        record("notes", None, note)
        notes.append(AdminNote(note=note, added_at=now, added_by=actor))

    updated = dataclasses.replace(subscription, **updates)
    if updated.end_date is not None and updated.end_date <= updated.start_date:
        raise ValidationError("End date must be after start date.")
    if changes:
        updated = dataclasses.replace(
            updated,
            updated_at=now,
            metadata=subscription.metadata.extended(changes=changes, notes=notes),
        )
    return updated, changes, notes


class SubscriptionUpdateService:
    """Operator-initiated mutations: status overrides, date edits, extensions."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        *,
        strict_extend_unit: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._strict_extend_unit = strict_extend_unit
        self._clock = clock

    def get(self, subscription_id: int) -> Subscription:
        subscription = self._repository.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found.")
        return subscription

    def update(
        self,
        subscription_id: int,
        patch: SubscriptionPatch,
        actor: str,
        *,
        expected_version: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> UpdateResult:
        now = self._clock()
        current = self.get(subscription_id)
        if user_id is not None and current.user_id != user_id:
            raise NotFoundError(f"Subscription {subscription_id} not found for user {user_id}.")

        updated, changes, notes = apply_update(
            current,
            patch,
            actor,
            now,
            strict_extend_unit=self._strict_extend_unit,
        )
        if not changes:
            return UpdateResult(subscription=current, changes=[], snapshot=compute_status(current, now))

        saved = self._repository.save_subscription(
            updated,
            expected_version if expected_version is not None else current.version,
            changes,
            notes,
        )
        snapshot = compute_status(saved, now)
        logger.info(
            "Subscription %s updated by %s: %s",
            saved.id,
            actor,
            ", ".join(entry.field for entry in changes),
        )
        if snapshot.needs_status_update:
            logger.info(
                "Subscription %s stored status %s differs from real-time status %s.",
                saved.id,
                saved.status.value,
                snapshot.real_time_status.value,
            )
        return UpdateResult(subscription=saved, changes=changes, snapshot=snapshot)
