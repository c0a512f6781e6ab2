"""
Sequential display tokens per daily queue.

The counter lives on the :class:`~queues.models.DailyQueue` row and is
advanced with a single ``UPDATE ... SET n = n + 1``; the write holds the
row lock until the surrounding transaction ends, so the value read back
right after it belongs to this caller alone.  Call :func:`next_token` inside
the transaction that also creates the entry: if that transaction rolls back
the increment goes with it.
"""
from __future__ import annotations

from typing import NamedTuple

from django.conf import settings
from django.db import transaction
from django.db.models import F

from queues.exceptions import QueueNotFound
from queues.models import DailyQueue


class IssuedToken(NamedTuple):
    sequence: int
    token_number: str
    version: int


def format_token(prefix: str, sequence: int) -> str:
    digits = getattr(settings, 'QUEUE_TOKEN_DIGITS', 3)
    return f"{prefix}{sequence:0{digits}d}"


def next_token(queue_id) -> IssuedToken:
    with transaction.atomic():
        updated = DailyQueue.objects.filter(pk=queue_id).update(
            current_token_number=F('current_token_number') + 1,
            version=F('version') + 1,
        )
        if not updated:
            raise QueueNotFound(f'Queue {queue_id} not found')
        prefix, sequence, version = (
            DailyQueue.objects.filter(pk=queue_id)
            .values_list('token_prefix', 'current_token_number', 'version')
            .get()
        )
    return IssuedToken(sequence, format_token(prefix, sequence), version)
