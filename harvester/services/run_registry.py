"""
In-process registry of ingestion runs started through the API.

Created in the app lifespan and kept on ``app.state``; nothing survives a
restart. Finished runs beyond ``max_runs`` are evicted oldest first.
"""

from __future__ import annotations

from harvester.schemas.schemas import IngestionSummary, RunStatusResponse


class RunRegistry:
    def __init__(self, max_runs: int = 100) -> None:
        self._max_runs = max_runs
        self._runs: dict[str, RunStatusResponse] = {}

    def __len__(self) -> int:
        return len(self._runs)

    def start(self, run_id: str) -> None:
        self._runs[run_id] = RunStatusResponse(run_id=run_id, status="running")
        self._evict()

    def complete(self, run_id: str, summary: IngestionSummary) -> None:
        self._runs[run_id] = RunStatusResponse(run_id=run_id, status="completed", summary=summary)

    def fail(self, run_id: str, error: str) -> None:
        self._runs[run_id] = RunStatusResponse(run_id=run_id, status="failed", error=error)

    def get(self, run_id: str) -> RunStatusResponse | None:
        return self._runs.get(run_id)

    def is_running(self) -> bool:
        return any(run.status == "running" for run in self._runs.values())

    def _evict(self) -> None:
        finished = [rid for rid, run in self._runs.items() if run.status != "running"]
        while len(self._runs) > self._max_runs and finished:
            del self._runs[finished.pop(0)]

    def clear(self) -> None:
        self._runs.clear()
