"""
Abstract base model for the payment service's tables.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """Adds created_at / updated_at and newest-first ordering."""

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]
