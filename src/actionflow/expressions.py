# expressions.py
# Renders ${{ github.<field> }} placeholders from the triggering event.
from __future__ import annotations

import re
from typing import Dict, Mapping

from .model import RepositoryEvent

_EXPR = re.compile(r"\$\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")


def event_context(event: RepositoryEvent) -> Dict[str, str]:
    ctx = {
        "event_name": event.kind.value,
        "ref": f"refs/heads/{event.branch}",
        "ref_name": event.branch,
        "sha": event.commit or "",
        "actor": event.actor or "",
        "repository": event.repository or "",
        "head_ref": "",
        "base_ref": "",
    }
    if event.kind.value == "pull_request":
        ctx["head_ref"] = event.head_branch
        ctx["base_ref"] = event.branch
    return ctx


def render(text: str, context: Mapping[str, str]) -> str:
    """Replace ${{ github.x }} with context["x"]; unknown names render as ""."""

    def _sub(m: re.Match) -> str:
        path = m.group(1)
        scope, _, key = path.partition(".")
        if scope != "github":
            return ""
        return str(context.get(key, ""))

    return _EXPR.sub(_sub, text)


def render_inputs(inputs: Mapping[str, str], context: Mapping[str, str]) -> Dict[str, str]:
    return {k: render(str(v), context) for k, v in inputs.items()}
