# task_poll.py
# Python 3.8/3.9 compatible

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from mgmt_api import MgmtApiClient, MgmtApiError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0
POLL_ATTEMPTS = 30

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"
WARNING_STATUSES = ("partially succeeded", "succeeded with warnings")


@dataclass
class TaskResult:
    success: bool
    status: Optional[str] = None
    details: List[str] = field(default_factory=list)
    polls: int = 0
    timed_out: bool = False
    error: Optional[str] = None


def task_detail_lines(task: Dict[str, Any]) -> List[str]:
    lines: List[str] = []
    for d in task.get("task-details") or []:
        if isinstance(d, dict):
            text = d.get("statusDescription") or d.get("message") or d.get("stagesInfo")
            lines.append(str(text) if text else str(d))
        elif d:
            lines.append(str(d))
    return lines


def poll_task(
    client: MgmtApiClient,
    sid: str,
    task_id: str,
    interval: float = POLL_INTERVAL,
    max_attempts: int = POLL_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
    on_progress: Optional[Callable[[str, int], None]] = None,
) -> TaskResult:
    """
    Poll show-task until the task reaches a terminal status.

    A failed poll request ends polling at once. Running out of attempts is
    reported as a timeout.
    """
    status: Optional[str] = None
    for attempt in range(1, max_attempts + 1):
        try:
            data = client.show_task(sid, task_id)
        except MgmtApiError as e:
            logger.error("Polling task %s failed: %s", task_id, e)
            return TaskResult(success=False, status=status, polls=attempt, error=str(e))

        tasks = data.get("tasks") or []
        task = tasks[0] if tasks else {}
        status = task.get("status")
        progress = task.get("progress-percentage") or 0
        logger.info("Task %s: %s (%s%%)", task_id, status or "unknown", progress)
        if on_progress:
            on_progress(status or "", int(progress))

        if status == STATUS_SUCCEEDED:
            return TaskResult(success=True, status=status, details=task_detail_lines(task), polls=attempt)
        if status == STATUS_FAILED:
            details = task_detail_lines(task)
            for line in details:
                logger.error("Task %s: %s", task_id, line)
            return TaskResult(success=False, status=status, details=details, polls=attempt)
        if status in WARNING_STATUSES:
            details = task_detail_lines(task)
            for line in details:
                logger.warning("Task %s: %s", task_id, line)
            return TaskResult(success=True, status=status, details=details, polls=attempt)

        if attempt < max_attempts:
            sleep(interval)

    logger.error("Task %s did not finish after %d polls", task_id, max_attempts)
    return TaskResult(
        success=False,
        status=status,
        polls=max_attempts,
        timed_out=True,
        error=f"timed out after {max_attempts} polls",
    )
