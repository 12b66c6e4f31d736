# actions/checkout.py
from __future__ import annotations

import shutil
import subprocess
from typing import Dict

from ..errors import InfrastructureError
from ..git_facts import git
from ..model import Environment, ReusableAction, StepResult, StepStatus

IGNORED = shutil.ignore_patterns(".actionflow")


def checkout(step: ReusableAction, inputs: Dict[str, str], environment: Environment) -> StepResult:
    """
    Populate the job workspace with the source tree.

    A git source is cloned (and the event commit checked out when known) so
    later steps can commit; anything else is copied.
    """
    source = environment.source
    dest = environment.workspace
    ref = inputs.get("ref") or environment.event.commit

    try:
        if git.is_repo(source):
            git.clone(source, dest, ref=ref)
            how = f"cloned {source}" + (f" at {ref}" if ref else "")
        else:
            shutil.copytree(source, dest, ignore=IGNORED, dirs_exist_ok=True)
            how = f"copied {source}"
    except subprocess.CalledProcessError as e:
        raise InfrastructureError(
            f"checkout failed: {(e.stderr or '').strip() or e}",
            job=environment.job,
            details={"source": str(source)},
        ) from e

    return StepResult(
        status=StepStatus.SUCCEEDED,
        output=how,
        environment=environment.with_state(checked_out="true"),
    )
