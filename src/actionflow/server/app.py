from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from ..archive import RunArchive, run_to_dict
from ..engine import Engine
from ..errors import InvalidEventError
from ..model import EventKind, RepositoryEvent

# -------------------- Schemas --------------------

class EventPayload(BaseModel):
    kind: EventKind
    branch: str
    source_branch: Optional[str] = None
    commit: Optional[str] = None
    actor: Optional[str] = None
    repository: Optional[str] = None
    permissions: dict[str, str] = Field(default_factory=dict)

    def to_event(self) -> RepositoryEvent:
        return RepositoryEvent(
            kind=self.kind,
            branch=self.branch,
            source_branch=self.source_branch,
            commit=self.commit,
            actor=self.actor,
            repository=self.repository,
            permissions=dict(self.permissions),
        )

class StepResponse(BaseModel):
    name: str
    status: str
    attempts: int = 0
    error_kind: Optional[str] = None
    error: Optional[str] = None
    effect_status: Optional[str] = None

class JobResponse(BaseModel):
    name: str
    status: str
    reason: Optional[str] = None
    steps: list[StepResponse]

class RunResponse(BaseModel):
    id: str
    workflow: str
    event: str
    branch: str
    commit: Optional[str] = None
    actor: Optional[str] = None
    status: str
    created_at: datetime
    finished_at: Optional[datetime] = None
    jobs: list[JobResponse]

# -------------------- App --------------------

def create_app(engine: Engine, archive: Optional[RunArchive] = None) -> FastAPI:
    app = FastAPI(title="actionflow event intake")

    @app.post("/events", response_model=list[RunResponse])
    def post_event(payload: EventPayload):
        """Run every workflow the event triggers; an empty list means nothing matched."""
        try:
            runs = engine.handle(payload.to_event())
        except InvalidEventError as e:
            raise HTTPException(status_code=422, detail=e.message)
        return [run_to_dict(r) for r in runs]

    @app.get("/runs", response_model=list[RunResponse])
    def list_runs(limit: int = 50, branch: Optional[str] = None):
        live = [run_to_dict(r) for r in engine.active_runs() if branch is None or r.event.branch == branch]
        archived = archive.list(limit=limit, branch=branch) if archive is not None else []
        return (live + archived)[:limit]

    @app.get("/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str):
        run = engine.get_active(run_id)
        if run is not None:
            return run_to_dict(run)
        data = archive.get(run_id) if archive is not None else None
        if data is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return data

    @app.post("/runs/{run_id}/cancel")
    def cancel_run(run_id: str):
        if not engine.cancel(run_id):
            raise HTTPException(status_code=404, detail="Run not active")
        return {"ok": True}

    return app
