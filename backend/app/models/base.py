"""Base model utilities for the donations backend.

Provides a UUID primary-key mixin so every model automatically gets
a ``id`` column of type ``UUID``.  The value is generated client-side so
the same models run on PostgreSQL and on the SQLite test database.
"""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Uuid
from sqlalchemy.orm import Mapped, mapped_column


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column named ``id``."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )


def utcnow() -> datetime.datetime:
    """Timezone-aware "now" used for created/updated timestamps."""
    return datetime.datetime.now(datetime.timezone.utc)
