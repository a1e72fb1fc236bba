from __future__ import annotations
from typing import Any
from pydantic import BaseModel


class QueueEvent(BaseModel):
    # upload_queued | upload_succeeded | upload_retry_scheduled | upload_failed |
    # queue_full | queue_near_full | status | online | offline | failed_cleared | failed_retried
    event: str
    item_id: str = ""
    data: dict[str, Any] = {}
