# models/mlm/job_run.py
"""
JobRun model - records completed batch steps for sequencing.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from datetime import datetime, timezone
from models.base import Base


class JobRun(Base):
    __tablename__ = 'job_runs'
    __table_args__ = (
        UniqueConstraint('jobName', 'runKey', name='uq_job_run'),
    )

    runID = Column(Integer, primary_key=True, autoincrement=True)
    jobName = Column(String, nullable=False)  # ghost_bv_expiry, weekly_settlement, ...
    runKey = Column(String, nullable=False)  # "2025-11-03"
    finishedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    summary = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<JobRun({self.jobName}@{self.runKey})>"
