"""Declarative base shared by all models."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Uuid
from sqlalchemy.orm import DeclarativeBase

from crm_automation.db.types import JSONType


class Base(DeclarativeBase):
    """
    Maps Python annotations to portable column types: timezone-aware
    timestamps, native UUIDs on PostgreSQL, and JSONB with a JSON fallback.
    """

    type_annotation_map = {
        datetime: DateTime(timezone=True),
        uuid.UUID: Uuid,
        dict: JSONType,
    }
