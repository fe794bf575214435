"""
Версии внешних контрактов.

HTTP_API_VERSION попадает в ответы API, QUEUE_SCHEMA_VERSION в каждую задачу
очереди. Воркер принимает только схемы из SUPPORTED_QUEUE_SCHEMAS.
"""

from __future__ import annotations

HTTP_API_VERSION = "v1"

QUEUE_SCHEMA_VERSION = "v1"
SUPPORTED_QUEUE_SCHEMAS = frozenset({QUEUE_SCHEMA_VERSION})
