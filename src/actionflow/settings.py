from __future__ import annotations
import os

DATABASE_URL = os.environ.get("ACTIONFLOW_DATABASE_URL", "sqlite:///.actionflow/runs.db")
WORK_DIR = os.environ.get("ACTIONFLOW_WORK_DIR", ".actionflow/work")
WORKFLOWS_DIR = os.environ.get("ACTIONFLOW_WORKFLOWS_DIR", ".github/workflows")
STEP_TIMEOUT = float(os.environ.get("ACTIONFLOW_STEP_TIMEOUT", "3600"))
STEP_RETRIES = int(os.environ.get("ACTIONFLOW_STEP_RETRIES", "2"))
RETRY_BACKOFF = float(os.environ.get("ACTIONFLOW_RETRY_BACKOFF", "1.0"))
MAX_WORKERS = int(os.environ["ACTIONFLOW_MAX_WORKERS"]) if os.environ.get("ACTIONFLOW_MAX_WORKERS") else None
# "skip": a step missing its permission grant is skipped; "fail": the job fails
PERMISSION_POLICY = os.environ.get("ACTIONFLOW_PERMISSION_POLICY", "skip")
