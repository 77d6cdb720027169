# affiliate_system/services/job_registry.py
"""
Completed batch steps, keyed by (jobName, runKey).
"""
from typing import Dict, Optional
from sqlalchemy.orm import Session

from models import JobRun
from affiliate_system.utils.time_machine import timeMachine


class JobRegistry:

    def __init__(self, session: Session):
        self.session = session

    def hasRun(self, jobName: str, runKey: str) -> bool:
        return self.session.query(JobRun).filter_by(jobName=jobName, runKey=runKey).first() is not None

    def markRun(self, jobName: str, runKey: str, summary: Optional[Dict] = None) -> JobRun:
        """Upsert; does not commit."""
        run = self.session.query(JobRun).filter_by(jobName=jobName, runKey=runKey).first()
        if run is None:
            run = JobRun(jobName=jobName, runKey=runKey)
            self.session.add(run)

        run.finishedAt = timeMachine.now
        run.summary = {k: str(v) for k, v in (summary or {}).items()}
        return run
