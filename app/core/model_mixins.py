"""
Abstract model mixins.

List them before BaseModel in the bases:

    class Transaction(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
        ...
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class MetadataMixin(models.Model):
    """
    JSON metadata that only ever grows.

    Provider payloads, callback markers and refund bookkeeping pile up
    on a record over its life. Writers go through merge_meta() so one
    step never drops keys written by another.
    """

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Flexible key-value metadata storage (merged on update)",
    )

    class Meta:
        abstract = True

    def merge_meta(self, values: Mapping[str, Any] | None, save: bool = True) -> None:
        """Shallow-merge values into metadata. Incoming keys win; None is a no-op."""
        if not values:
            return
        self.metadata = {**(self.metadata or {}), **values}
        if save:
            self.save(update_fields=["metadata", "updated_at"])
