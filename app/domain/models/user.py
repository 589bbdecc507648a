"""Administrator account model."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class User:
    """
    Operator allowed to read and mutate subscriptions.

    Attributes:
        id: Unique identifier
        email: Login e-mail (unique, lower-case); used as the audit actor
        password_hash: bcrypt hash
        is_active: Disabled accounts cannot authenticate
    """

    id: int
    email: str
    password_hash: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
