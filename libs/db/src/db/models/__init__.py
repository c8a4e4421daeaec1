"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the statement-import models used by ``statement_import``.
"""

from .imports import Base, SiCorrectionRule, SiEntity, SiTransaction

__all__ = [
    "Base",
    "SiCorrectionRule",
    "SiEntity",
    "SiTransaction",
]
