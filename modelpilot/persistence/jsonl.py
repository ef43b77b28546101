"""JSONL outcome log: an append-only export of every committed record."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from modelpilot.schemas.outcome import OutcomeRecord, OutcomeStatus


class JsonlOutcomeLog:
    """Append-only outcome log, one JSON object per line."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def record(self, outcome: OutcomeRecord) -> None:
        """Append an outcome to the log."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(outcome.model_dump_json() + "\n")

    async def write(self, outcome: OutcomeRecord) -> None:
        """OutcomeSink interface; file I/O runs off the event loop."""
        await asyncio.to_thread(self.record, outcome)

    def query(
        self,
        router_id: str | None = None,
        model_id: str | None = None,
        status: OutcomeStatus | None = None,
        since: str | None = None,
        limit: int | None = None,
    ) -> list[OutcomeRecord]:
        """Filter and return outcomes from the log, oldest first."""
        results: list[OutcomeRecord] = []
        if not self.path.exists():
            return results

        with open(self.path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                if router_id and data.get("router_id") != router_id:
                    continue
                if model_id and data.get("model_id") != model_id:
                    continue
                if status and data.get("status") != status.value:
                    continue
                if since and data.get("timestamp", "") < since:
                    continue
                results.append(OutcomeRecord.model_validate(data))

        if limit:
            results = results[-limit:]
        return results
