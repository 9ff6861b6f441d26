"""Declarative base shared by all ORM records."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
