"""
Side effects that run after a booking is durably committed.
Each task commits on its own; a failing task is rolled back and recorded,
never undoing the booking and never blocking the tasks after it.
"""
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.config import logger


class PostCommitTasks:
    def __init__(self, db: Session, scope: str):
        self.db = db
        self.scope = scope
        self.diagnostics: list[dict] = []

    def run(self, name: str, task: Callable[[], Optional[bool]]) -> bool:
        """Execute `task`; any raised error or a False return counts as failure."""
        try:
            result = task()
            self.db.commit()
        except Exception as ex:
            self.db.rollback()
            logger.warning(f"[{self.scope}] {name} failed: {type(ex).__name__}: {ex}")
            self.diagnostics.append({"task": name, "error": str(ex) or type(ex).__name__})
            return False
        if result is False:
            logger.warning(f"[{self.scope}] {name} reported failure")
            self.diagnostics.append({"task": name, "error": "reported failure"})
            return False
        return True

    @property
    def ok(self) -> bool:
        return not self.diagnostics
