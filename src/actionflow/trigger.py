# trigger.py
from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, List

from .errors import InvalidEventError
from .model import RepositoryEvent, TriggerRule, WorkflowDefinition

REF_PREFIX = "refs/heads/"

# git check-ref-format, restricted to a single branch name
_BAD_REF = re.compile(r"(^[/.]|[/.]$|\.\.|//|@\{|/\.|\.lock$|\.lock/|[\x00-\x20\x7f~^:?*\[\\])")


def normalize_branch(branch: str) -> str:
    """Strip refs/heads/ and validate the remaining name as a git branch name."""
    if branch.startswith(REF_PREFIX):
        branch = branch[len(REF_PREFIX):]
    if not branch or branch == "@" or _BAD_REF.search(branch):
        raise InvalidEventError(f"Invalid branch name: {branch!r}", details={"branch": branch})
    return branch


@lru_cache(maxsize=256)
def branch_pattern(pattern: str) -> "re.Pattern[str]":
    """
    Compile a branch filter the way GitHub reads them: `*` stops at `/`,
    `**` crosses it, `?` and `+` repeat the preceding character, and
    `[...]` is a character class. Everything else is literal.

    Raises:
        re.error for a malformed character class.
    """
    out: List[str] = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if c == "*":
            out.append("[^/]*")
        elif c in "?+" and out and out[-1][-1] not in "*?+":
            out.append(c)
        elif c == "[" and "]" in pattern[i + 1:]:
            end = pattern.index("]", i + 1)
            out.append(pattern[i:end + 1])
            i = end + 1
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out))


def _matches_any(branch: str, patterns: Iterable[str]) -> bool:
    return any(branch_pattern(p).fullmatch(branch) for p in patterns)


def rule_matches(event: RepositoryEvent, rule: TriggerRule) -> bool:
    if rule.event != event.kind:
        return False

    branch = normalize_branch(event.branch)
    if rule.branches_ignore and _matches_any(branch, rule.branches_ignore):
        return False
    if rule.branches is None:
        return True
    return _matches_any(branch, rule.branches)


def matches(event: RepositoryEvent, rules: Iterable[TriggerRule]) -> bool:
    """
    True iff some rule has the event's kind and one of its branch patterns
    matches the event's target branch. An event kind no rule mentions is a
    normal no-op, not an error.
    """
    normalize_branch(event.branch)
    return any(rule_matches(event, rule) for rule in rules)


def select_workflows(event: RepositoryEvent, workflows: Iterable[WorkflowDefinition]) -> List[WorkflowDefinition]:
    return [wf for wf in workflows if matches(event, wf.triggers)]
