"""Broker registry entries and per-broker submission history records."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class KnownField(BaseModel):
    """A form field the registry knows a broker asks for."""

    label: str
    type: str = "text"
    profile_key: str | None = None


class Broker(BaseModel):
    """A data broker from the registry."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    url: str = ""
    category: str = ""
    method: str = ""
    opt_out_url: str = ""
    known_fields: list[KnownField] = Field(default_factory=list)
    notes: str = ""
    requires_verification: str | None = None
    relist_days: int | None = None
    difficulty: str = ""
    last_verified: str = ""


class BrokerRegistry(BaseModel):
    """Registry file envelope."""

    version: str = ""
    brokers: list[Broker] = Field(default_factory=list)


class SubmissionStatus(str, Enum):
    """Lifecycle of one broker submission."""

    SUBMITTED = "submitted"
    PENDING_VERIFICATION = "pending_verification"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    RE_LISTED = "re_listed"


class SubmissionRecord(BaseModel):
    """A single opt-out submission outcome for history and re-list tracking."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    broker_id: str
    run_id: str
    status: SubmissionStatus
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    confirmed_at: datetime | None = None
    next_check_date: datetime | None = None
    error_message: str | None = None

    @classmethod
    def success(cls, broker: Broker, run_id: str) -> "SubmissionRecord":
        """Record a submitted opt-out, scheduling a re-list check if configured."""
        status = (
            SubmissionStatus.PENDING_VERIFICATION
            if broker.requires_verification
            else SubmissionStatus.SUBMITTED
        )
        now = datetime.now(timezone.utc)
        next_check = now + timedelta(days=broker.relist_days) if broker.relist_days else None
        return cls(
            broker_id=broker.id,
            run_id=run_id,
            status=status,
            submitted_at=now,
            next_check_date=next_check,
        )

    @classmethod
    def failure(cls, broker_id: str, run_id: str, error: str) -> "SubmissionRecord":
        """Record a failed opt-out attempt."""
        return cls(
            broker_id=broker_id,
            run_id=run_id,
            status=SubmissionStatus.FAILED,
            error_message=error,
        )
