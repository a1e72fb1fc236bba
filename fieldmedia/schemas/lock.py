from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class Lock(BaseModel):
    """Advisory, time-boxed edit lock on one annotation document."""

    resource_id: str
    holder_id: str
    holder_name: str = ""
    acquired_at: datetime
    expires_at: datetime


class LockState(BaseModel):
    is_locked: bool = False
    is_own_lock: bool = False
    lock_holder: str | None = None
    lock_holder_name: str | None = None
    expires_at: datetime | None = None


class LockAcquireResult(BaseModel):
    success: bool
    expires_at: datetime | None = None
    locked_by: str | None = None
    locked_by_name: str | None = None
    message: str = ""
