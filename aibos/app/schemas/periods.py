from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from aibos.app.models.period import LockType, PeriodStatus


class PeriodGenerate(BaseModel):
    fiscal_year: int = Field(..., ge=1900, le=2999)


class PeriodUpdate(BaseModel):
    period_name: str | None = Field(None, min_length=1, max_length=50)
    start_date: date | None = None
    end_date: date | None = None
    status: PeriodStatus | None = None

    @model_validator(mode="after")
    def end_after_start(self) -> PeriodUpdate:
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class PeriodAction(BaseModel):
    action: Literal["close", "open", "lock"]
    period_id: UUID
    close_date: date | None = None
    force_close: bool = False
    create_reversing_entries: bool = True
    notes: str | None = None
    reason: str | None = Field(None, max_length=500)
    lock_type: LockType | None = None

    @model_validator(mode="after")
    def action_fields(self) -> PeriodAction:
        if self.action == "lock" and self.lock_type is None:
            raise ValueError("lock_type is required for the lock action")
        return self


class PeriodLockOut(BaseModel):
    id: UUID
    lock_type: LockType
    reason: str | None
    is_active: bool
    locked_by: UUID
    locked_at: datetime | None = None

    class Config:
        from_attributes = True


class PeriodOut(BaseModel):
    id: UUID
    fiscal_year: int
    period_number: int
    period_name: str
    start_date: date
    end_date: date
    status: PeriodStatus
    closed_at: datetime | None
    closed_by: UUID | None
    reopen_reason: str | None

    class Config:
        from_attributes = True


class CloseValidationOut(BaseModel):
    can_close: bool
    errors: list[str] = []
    warnings: list[str] = []


class PeriodActionOut(BaseModel):
    action: str
    period: PeriodOut
    next_period_id: UUID | None = None
    reversing_entries_created: int | None = None
    validation: CloseValidationOut | None = None
    lock: PeriodLockOut | None = None
