"""JSON file persistence for the task arena and scheduler config."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from tasktree.models import SchedulerConfig, Task
from tasktree.repository import TaskArena

DEFAULT_DB_FILE = "tasktree.json"
DB_ENV_VAR = "TASKTREE_DB"

logger = logging.getLogger(__name__)


def default_db_path() -> Path:
    raw = os.getenv(DB_ENV_VAR)
    if raw is None or raw.strip() == "":
        return Path(DEFAULT_DB_FILE)
    return Path(raw).expanduser()


class Store:
    """Reads and writes the task database (JSON file)."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path is not None else default_db_path()

    def load(self) -> tuple[SchedulerConfig | None, dict[int, Task]]:
        """Return (config_or_None, {task_id: Task})."""
        if not self.db_path.exists():
            return None, {}

        raw = json.loads(self.db_path.read_text())

        config = None
        if "config" in raw:
            config = SchedulerConfig.from_dict(raw["config"])

        tasks: dict[int, Task] = {}
        for tid, tdata in raw.get("tasks", {}).items():
            task = Task.from_dict(int(tid), tdata)
            tasks[task.id] = task

        logger.debug("Loaded %d tasks from %s", len(tasks), self.db_path)
        return config, tasks

    def save(self, config: SchedulerConfig | None, tasks: dict[int, Task]) -> None:
        """Persist config + tasks to disk."""
        raw: dict = {}
        if config is not None:
            raw["config"] = config.to_dict()
        raw["tasks"] = {str(tid): tasks[tid].to_dict() for tid in sorted(tasks)}
        self.db_path.write_text(json.dumps(raw, indent=4))
        logger.debug("Saved %d tasks to %s", len(tasks), self.db_path)

    def open(self) -> tuple[SchedulerConfig, TaskArena]:
        """Load an arena that writes itself back after every committed transaction."""
        config, tasks = self.load()
        config = config or SchedulerConfig()

        def _persist(arena: TaskArena) -> None:
            self.save(config, {t.id: t for t in arena.find_all()})

        return config, TaskArena(tasks.values(), on_commit=_persist)
