"""
Base Classes
------------

Foundational ORM classes for the sitewide mirror database.

Classes:
    - Base: Declarative base for all SQLAlchemy models

Every mirror table name carries the ``sw_`` prefix so the sitewide tables
can live next to tenant tables in one database without clashing.
"""
# --- Annotations ---
from __future__ import annotations

# --- Third party ---
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase


TABLE_PREFIX = "sw_"


# --- Base ORM class ---
class Base(DeclarativeBase):
    """
    Base class for all ORM models.

    Serves as the declarative base for the mirror models and provides
    access to the metadata object used by the schema manager.
    """

    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
        }
    )
