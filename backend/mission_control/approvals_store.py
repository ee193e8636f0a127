"""Approval requests queued by agents, stored as JSON lines on disk.

Every mutation rewrites the whole file through a temp file + rename so a
reader never observes a half-written queue.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import tempfile
import time
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from pydantic import ValidationError

from mission_control import config
from mission_control.models import ApprovalCreateRequest, ApprovalRequest, ApprovalUpdateFields

logger = logging.getLogger("mission_control.approvals")


def _new_approval_id() -> str:
    return f"approval-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class ApprovalsStore:
    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = Lock()

    def _read_unlocked(self) -> list[ApprovalRequest]:
        if not self.path.exists():
            return []

        approvals: list[ApprovalRequest] = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line_number, raw_line in enumerate(handle, start=1):
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    approvals.append(ApprovalRequest.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError):
                    logger.warning("Skipping malformed approvals line %d in %s", line_number, self.path)
        return approvals

    def _write_unlocked(self, approvals: list[ApprovalRequest]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = "".join(
            json.dumps(approval.model_dump(mode="json", by_alias=True, exclude_none=True), ensure_ascii=False) + "\n"
            for approval in approvals
        )
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=f"{self.path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_path = Path(tmp.name)
        tmp_path.replace(self.path)

    def list_approvals(self, status: Optional[str] = None) -> list[ApprovalRequest]:
        with self._lock:
            approvals = self._read_unlocked()
        if status in (None, "", "all"):
            return approvals
        return [approval for approval in approvals if approval.status == status]

    def add(self, request: ApprovalCreateRequest) -> ApprovalRequest:
        approval = ApprovalRequest(
            id=_new_approval_id(),
            timestamp=datetime.now(timezone.utc),
            agent=request.agent,
            type=request.type,
            title=request.title,
            description=request.description,
            details=request.details,
            status="pending",
        )
        with self._lock:
            approvals = self._read_unlocked()
            approvals.append(approval)
            self._write_unlocked(approvals)
        return approval

    def _update(self, approval_id: str, changes: dict[str, Any]) -> Optional[ApprovalRequest]:
        with self._lock:
            approvals = self._read_unlocked()
            for index, existing in enumerate(approvals):
                if existing.id != approval_id:
                    continue
                updated = existing.model_copy(update=changes)
                approvals[index] = updated
                self._write_unlocked(approvals)
                return updated
        return None

    def update(self, approval_id: str, fields: ApprovalUpdateFields) -> Optional[ApprovalRequest]:
        return self._update(approval_id, fields.model_dump(exclude_none=True))

    def approve(self, approval_id: str, notes: Optional[str] = None) -> Optional[ApprovalRequest]:
        return self._update(
            approval_id,
            {
                "status": "approved",
                "approved_at": datetime.now(timezone.utc),
                "approved_by": config.APPROVALS_APPROVER,
                "notes": notes,
            },
        )

    def reject(self, approval_id: str, notes: Optional[str] = None) -> Optional[ApprovalRequest]:
        return self._update(
            approval_id,
            {
                "status": "rejected",
                "rejected_at": datetime.now(timezone.utc),
                "notes": notes,
            },
        )

    def delete(self, approval_id: str) -> bool:
        with self._lock:
            approvals = self._read_unlocked()
            remaining = [approval for approval in approvals if approval.id != approval_id]
            if len(remaining) == len(approvals):
                return False
            self._write_unlocked(remaining)
        return True

    def stats(self) -> dict[str, int]:
        counts = Counter(approval.status for approval in self.list_approvals())
        return {
            "total": sum(counts.values()),
            "pending": counts.get("pending", 0),
            "approved": counts.get("approved", 0),
            "rejected": counts.get("rejected", 0),
        }


approvals_store = ApprovalsStore(config.APPROVALS_QUEUE_PATH)
