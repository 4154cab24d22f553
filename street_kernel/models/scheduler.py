"""Scheduler bookkeeping."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class JobRun(BaseModel):
    """One execution of a scheduled job."""

    job_name: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    ok: bool = False
    summary: dict = {}
    error: Optional[str] = None


class JobStatus(BaseModel):
    name: str
    schedule: str
    next_run_at: datetime
    last_run: Optional[JobRun] = None
    run_count: int = 0
    failure_count: int = 0
