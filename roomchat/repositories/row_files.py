from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any
from uuid import uuid4

from roomchat.constants import MAX_ROW_ID_LENGTH

logger = logging.getLogger(__name__)


def sanitize_row_id(value: Any) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_.-]", "_", str(value).strip())
    cleaned = cleaned.lstrip(".")[:MAX_ROW_ID_LENGTH]
    if not cleaned:
        raise ValueError("Row id is empty after sanitizing.")
    return cleaned


class JsonRowDirectory:
    """A table stored as one JSON document per row, keyed by file name."""

    def __init__(self, table_dir: str | Path):
        self.table_dir = Path(table_dir)

    def ensure_paths(self) -> None:
        try:
            os.makedirs(self.table_dir, exist_ok=True)
        except OSError as exc:
            logger.warning("Failed ensuring table dir %s: %s", self.table_dir, exc)

    def get_row_path(self, row_id: str) -> Path:
        base = self.table_dir.resolve()
        target = (base / sanitize_row_id(row_id)).resolve()
        if target.parent != base:
            raise ValueError("Invalid row id for table path.")
        return target

    def read_row(self, row_id: str) -> dict[str, Any] | None:
        path = self.get_row_path(row_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as exc:
            logger.warning("Failed reading row file %s: %s", path, exc)
            return None
        except json.JSONDecodeError:
            self.drop_malformed_row(path)
            return None
        return data if isinstance(data, dict) else None

    def iter_rows(self) -> list[tuple[Path, dict[str, Any]]]:
        rows: list[tuple[Path, dict[str, Any]]] = []
        if not self.table_dir.exists():
            return rows
        for path in self.table_dir.iterdir():
            if not path.is_file() or path.name.startswith("."):
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Failed reading row file %s: %s", path, exc)
                continue
            except json.JSONDecodeError:
                self.drop_malformed_row(path)
                continue
            if isinstance(data, dict):
                rows.append((path, data))
        return rows

    def write_row_atomic(self, row_id: str, data: dict[str, Any]) -> bool:
        self.ensure_paths()
        row_path = self.get_row_path(row_id)
        tmp_name = f".{row_path.name}.tmp-{os.getpid()}-{uuid4().hex[:8]}"
        tmp_path = row_path.with_name(tmp_name)
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, row_path)
            return True
        finally:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass

    def delete_row(self, row_id: str) -> bool:
        path = self.get_row_path(row_id)
        if not path.exists():
            return False
        path.unlink(missing_ok=True)
        return True

    def snapshot(self) -> dict[str, int]:
        """Map row file names to their mtime, used to diff for change events."""
        stamps: dict[str, int] = {}
        if not self.table_dir.exists():
            return stamps
        for path in self.table_dir.iterdir():
            if not path.is_file() or path.name.startswith("."):
                continue
            try:
                stamps[path.name] = path.stat().st_mtime_ns
            except OSError:
                continue
        return stamps

    def drop_malformed_row(self, path: Path) -> None:
        logger.warning("Dropping malformed row file %s", path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove malformed row file %s: %s", path, exc)
