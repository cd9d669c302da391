"""
Abstract model mixins.

Available Mixins:
    UUIDPrimaryKeyMixin: UUID primary key generated on instantiation
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a random UUID as primary key.

    Ids are known before the insert, so a record and the rows pointing
    at it (e.g. timeline entries) can be written in one transaction, and
    ids in URLs do not reveal record counts.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True
