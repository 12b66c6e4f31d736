# archive.py
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from . import settings
from .model import Run


class Base(DeclarativeBase):
    pass


class RunRow(Base):
    __tablename__ = "runs"
    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True)
    workflow: Mapped[str] = mapped_column(sa.Text, nullable=False)
    event: Mapped[str] = mapped_column(sa.Text, nullable=False)
    branch: Mapped[str] = mapped_column(sa.Text, nullable=False)
    commit: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    actor: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)


class JobRow(Base):
    __tablename__ = "jobs"
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    job_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    steps_json: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)


# -------------------- Serialization --------------------

def run_to_dict(run: Run) -> Dict[str, Any]:
    return {
        "id": run.id,
        "workflow": run.workflow,
        "event": run.event.kind.value,
        "branch": run.event.branch,
        "commit": run.event.commit,
        "actor": run.event.actor,
        "status": run.status.value,
        "created_at": run.created_at,
        "finished_at": run.finished_at,
        "jobs": [
            {
                "name": job.name,
                "status": job.status.value,
                "reason": job.reason,
                "steps": [
                    {
                        "name": s.name,
                        "status": s.status.value,
                        "attempts": s.attempts,
                        "error_kind": s.error_kind,
                        "error": s.error,
                        "effect_status": s.effect_status,
                    }
                    for s in job.steps
                ],
            }
            for job in run.jobs.values()
        ],
    }


def _row_to_dict(row: RunRow, jobs: List[JobRow]) -> Dict[str, Any]:
    return {
        "id": row.id,
        "workflow": row.workflow,
        "event": row.event,
        "branch": row.branch,
        "commit": row.commit,
        "actor": row.actor,
        "status": row.status,
        "created_at": row.created_at,
        "finished_at": row.finished_at,
        "jobs": [
            {"name": j.job_name, "status": j.status, "reason": j.reason, "steps": j.steps_json}
            for j in sorted(jobs, key=lambda j: j.position)
        ],
    }


# -------------------- Store --------------------

class RunArchive:
    """Keeps finished runs after their live state is discarded."""

    def __init__(self, url: str = settings.DATABASE_URL):
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            db_path = make_url(url).database
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.engine = sa.create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(self.engine, expire_on_commit=False)

    def save(self, run: Run) -> None:
        data = run_to_dict(run)
        with self.Session() as s, s.begin():
            s.execute(sa.delete(JobRow).where(JobRow.run_id == run.id))
            s.merge(RunRow(
                id=run.id,
                workflow=run.workflow,
                event=data["event"],
                branch=data["branch"],
                commit=data["commit"],
                actor=data["actor"],
                status=data["status"],
                created_at=run.created_at,
                finished_at=run.finished_at,
            ))
            for position, job in enumerate(data["jobs"]):
                s.add(JobRow(
                    run_id=run.id,
                    position=position,
                    job_name=job["name"],
                    status=job["status"],
                    reason=job["reason"],
                    steps_json=job["steps"],
                ))

    def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        with self.Session() as s:
            row = s.get(RunRow, run_id)
            if row is None:
                return None
            jobs = s.scalars(sa.select(JobRow).where(JobRow.run_id == run_id)).all()
            return _row_to_dict(row, list(jobs))

    def list(self, limit: int = 50, branch: Optional[str] = None) -> List[Dict[str, Any]]:
        with self.Session() as s:
            q = sa.select(RunRow).order_by(RunRow.created_at.desc()).limit(limit)
            if branch is not None:
                q = q.where(RunRow.branch == branch)
            rows = s.scalars(q).all()
            out = []
            for row in rows:
                jobs = s.scalars(sa.select(JobRow).where(JobRow.run_id == row.id)).all()
                out.append(_row_to_dict(row, list(jobs)))
            return out
