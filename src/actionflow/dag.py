# dag.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Set, Tuple, Union

from .errors import ConfigError, CycleDetectedError
from .model import JobDefinition


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered batches of job names; jobs inside one batch may run concurrently."""
    batches: Tuple[Tuple[str, ...], ...]

    @property
    def jobs(self) -> List[str]:
        return [name for batch in self.batches for name in batch]

    def __len__(self) -> int:
        return len(self.batches)

    def __iter__(self):
        return iter(self.batches)


def build_dag(jobs: List[JobDefinition]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from job definitions.

    Requires:
      - job.name: str (unique)
      - job.needs: names of jobs that must finish BEFORE this job
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigError(f"Duplicate job names found: {dupes}", details={"duplicates": dupes})

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for need in job.needs:
            if need not in name_set:
                raise ConfigError(
                    f"Job '{job.name}' needs missing job '{need}'. Known jobs: {names}",
                    job=job.name,
                )
            # edge need -> job (need must run before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(order: List[str], adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological "levels" (batches).

    Each batch can run in parallel. Members of a batch keep the declaration
    order given by `order`, so identical input always yields identical batches.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    position = {name: i for i, name in enumerate(order)}
    current = [n for n in order if indeg[n] == 0]

    levels: List[List[str]] = []
    processed = 0

    while current:
        levels.append(current)
        processed += len(current)

        unlocked: List[str] = []
        for node in current:
            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    unlocked.append(child)
        current = sorted(unlocked, key=position.__getitem__)

    if processed != len(order):
        stuck = [n for n in order if indeg[n] > 0]
        raise CycleDetectedError(
            f"Job graph has a cycle. Stuck jobs: {stuck}",
            details={"stuck": stuck},
        )

    return levels


def resolve(jobs: Union[Mapping[str, JobDefinition], Iterable[JobDefinition]]) -> ExecutionPlan:
    """
    Compute the execution plan for a set of jobs.

    Raises ConfigError for unknown or duplicate names and CycleDetectedError
    when the `needs` relation is not a DAG. Never returns a partial plan.
    """
    if isinstance(jobs, Mapping):
        job_list = list(jobs.values())
    else:
        job_list = list(jobs)

    adj, indeg = build_dag(job_list)
    levels = topo_levels([j.name for j in job_list], adj, indeg)
    return ExecutionPlan(batches=tuple(tuple(level) for level in levels))
