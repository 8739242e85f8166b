"""
tabulator/orm/base.py
Declarative base for all ORM models
"""
import uuid

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def new_id() -> str:
    """String UUID primary key default."""
    return str(uuid.uuid4())
