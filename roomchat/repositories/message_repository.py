from __future__ import annotations

import json
import logging
import os
import random
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import portalocker

from roomchat.constants import (
    LOCK_BACKOFF_BASE_SECONDS,
    LOCK_BACKOFF_MAX_SECONDS,
    LOCK_MAX_ATTEMPTS,
    LOCK_TIMEOUT_SECONDS,
    MESSAGES_FILE,
    MESSAGES_TABLE,
    ROW_SCHEMA_VERSION,
)
from roomchat.models import ChangeEvent

logger = logging.getLogger(__name__)

OPERATION_TYPES = {"insert": "INSERT", "update": "UPDATE", "delete": "DELETE"}

# Given the replayed table, return the operation to append or None to skip.
OperationBuilder = Callable[[dict[str, dict[str, Any]]], dict[str, Any] | None]


class MessageRepository:
    """The messages table as an append-only JSONL operation log.

    Every write appends one ``insert``/``update``/``delete`` operation while
    holding an exclusive file lock, so row operations are atomic across
    clients sharing the folder. Current state is the replay of the log.
    """

    def __init__(self, data_root: str | Path, max_attempts: int = LOCK_MAX_ATTEMPTS):
        self.data_root = Path(data_root)
        self.max_attempts = max_attempts

    def get_message_file(self) -> Path:
        return self.data_root / MESSAGES_FILE

    def ensure_paths(self) -> None:
        try:
            os.makedirs(self.data_root, exist_ok=True)
            self.get_message_file().touch(exist_ok=True)
        except OSError as exc:
            logger.warning("Failed ensuring message log paths: %s", exc)

    def parse_operation_line(self, line: str) -> dict[str, Any] | None:
        line = line.strip()
        if not line:
            return None
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Invalid message log row ignored.")
            return None
        if not isinstance(data, dict):
            return None

        op = str(data.get("op", "")).strip().lower()
        if op not in OPERATION_TYPES:
            logger.warning("Invalid message operation '%s' ignored.", op)
            return None

        version = data.get("v", ROW_SCHEMA_VERSION)
        if not isinstance(version, int) or version > ROW_SCHEMA_VERSION:
            logger.warning("Unsupported message log schema version %s ignored.", version)
            return None

        payload_key = "old" if op == "delete" else "row"
        payload = data.get(payload_key)
        if not isinstance(payload, dict) or not str(payload.get("id", "")).strip():
            logger.warning("Message operation without row id ignored.")
            return None
        data["op"] = op
        return data

    def replay(self, lines: list[str]) -> dict[str, dict[str, Any]]:
        table: dict[str, dict[str, Any]] = {}
        for line in lines:
            operation = self.parse_operation_line(line)
            if operation is None:
                continue
            op = operation["op"]
            if op == "delete":
                table.pop(str(operation["old"]["id"]), None)
                continue
            row = operation["row"]
            row_id = str(row["id"])
            if op == "insert":
                table[row_id] = dict(row)
            elif row_id in table:
                table[row_id] = {**table[row_id], **row}
        return table

    def read_lines(self) -> list[str]:
        path = self.get_message_file()
        if not path.exists():
            return []
        with open(path, "r", encoding="utf-8") as f:
            return f.readlines()

    def load_rows(self) -> list[dict[str, Any]]:
        rows = list(self.replay(self.read_lines()).values())
        rows.sort(key=lambda row: (str(row.get("created_at", "")), str(row["id"])))
        return rows

    def load_row(self, message_id: str) -> dict[str, Any] | None:
        return self.replay(self.read_lines()).get(message_id)

    def insert_row(self, row: dict[str, Any]) -> dict[str, Any] | None:
        def build(table: dict[str, dict[str, Any]]) -> dict[str, Any] | None:
            if str(row["id"]) in table:
                return None
            return {"v": ROW_SCHEMA_VERSION, "op": "insert", "row": row}

        return row if self.append_operation(build) else None

    def update_row(
        self, message_id: str, user_id: str, fields: dict[str, Any]
    ) -> dict[str, Any] | None:
        result: dict[str, Any] = {}

        def build(table: dict[str, dict[str, Any]]) -> dict[str, Any] | None:
            current = table.get(message_id)
            if current is None or current.get("user_id") != user_id:
                return None
            result.update(current)
            result.update(fields)
            return {"v": ROW_SCHEMA_VERSION, "op": "update", "row": dict(result)}

        return dict(result) if self.append_operation(build) else None

    def delete_row(self, message_id: str, user_id: str) -> bool:
        def build(table: dict[str, dict[str, Any]]) -> dict[str, Any] | None:
            current = table.get(message_id)
            if current is None or current.get("user_id") != user_id:
                return None
            return {
                "v": ROW_SCHEMA_VERSION,
                "op": "delete",
                "old": {"id": message_id, "user_id": user_id},
            }

        return self.append_operation(build)

    def append_operation(self, build: OperationBuilder) -> bool:
        """Replay, decide and append under one lock; False when nothing was written."""
        self.ensure_paths()
        message_file = self.get_message_file()
        for attempt in range(self.max_attempts):
            try:
                with portalocker.Lock(
                    str(message_file),
                    mode="a+",
                    timeout=LOCK_TIMEOUT_SECONDS,
                    fail_when_locked=True,
                    encoding="utf-8",
                ) as f:
                    f.seek(0)
                    operation = build(self.replay(f.readlines()))
                    if operation is None:
                        return False
                    f.seek(0, os.SEEK_END)
                    f.write(json.dumps(operation, ensure_ascii=True) + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                return True
            except portalocker.exceptions.LockException:
                pass
            except OSError as exc:
                logger.warning("Message log write attempt failed: %s", exc)

            if attempt == self.max_attempts - 1:
                break
            delay = min(
                LOCK_BACKOFF_MAX_SECONDS,
                LOCK_BACKOFF_BASE_SECONDS * (2 ** min(attempt, 5)),
            )
            time.sleep(delay + random.uniform(0, 0.03))

        raise OSError(f"Message log stayed locked after {self.max_attempts} attempts.")

    def read_changes_since(self, offset: int) -> tuple[list[ChangeEvent], int]:
        path = self.get_message_file()
        if not path.exists():
            return [], 0
        with open(path, "rb") as f:
            current_size = os.fstat(f.fileno()).st_size
            if current_size < offset:
                logger.warning(
                    "Message log shrank from offset %s to %s; resetting.",
                    offset,
                    current_size,
                )
                offset = 0
            f.seek(offset)
            chunk = f.read()

        # A trailing line without newline is still being written.
        complete, newline, _ = chunk.rpartition(b"\n")
        if not newline:
            return [], offset
        consumed = len(complete) + 1

        events: list[ChangeEvent] = []
        for raw in complete.split(b"\n"):
            operation = self.parse_operation_line(raw.decode("utf-8", errors="replace"))
            if operation is None:
                continue
            event_type = OPERATION_TYPES[operation["op"]]
            if event_type == "DELETE":
                events.append(
                    ChangeEvent(
                        table=MESSAGES_TABLE, event_type=event_type, old=operation["old"]
                    )
                )
            else:
                events.append(
                    ChangeEvent(
                        table=MESSAGES_TABLE,
                        event_type=event_type,
                        new=operation["row"],
                        old={"id": operation["row"]["id"]},
                    )
                )
        return events, offset + consumed

    def current_offset(self) -> int:
        path = self.get_message_file()
        try:
            return path.stat().st_size
        except OSError:
            return 0
