from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from roomchat.constants import TYPING_TABLE
from roomchat.models import TypingIndicator
from roomchat.repositories.row_files import JsonRowDirectory

logger = logging.getLogger(__name__)


class TypingRepository(JsonRowDirectory):
    def __init__(self, data_root: str | Path):
        super().__init__(Path(data_root) / TYPING_TABLE)

    def load_indicators(self) -> list[TypingIndicator]:
        indicators: list[TypingIndicator] = []
        for path, data in self.iter_rows():
            try:
                indicators.append(TypingIndicator.model_validate(data))
            except ValidationError:
                self.drop_malformed_row(path)
        indicators.sort(key=lambda item: (item.created_at, item.user_id))
        return indicators

    def select_active(self, since: datetime) -> list[TypingIndicator]:
        return [item for item in self.load_indicators() if item.updated_at > since]

    def upsert(self, indicator: TypingIndicator) -> TypingIndicator:
        existing = self.read_row(indicator.user_id)
        if existing is not None:
            try:
                previous = TypingIndicator.model_validate(existing)
                indicator = indicator.model_copy(
                    update={"created_at": previous.created_at}
                )
            except ValidationError:
                pass
        self.write_row_atomic(indicator.user_id, indicator.to_row())
        return indicator

    def delete(self, user_id: str) -> bool:
        return self.delete_row(user_id)

    def delete_older_than(self, cutoff: datetime) -> int:
        removed = 0
        for indicator in self.load_indicators():
            if indicator.updated_at >= cutoff:
                continue
            try:
                if self.delete_row(indicator.user_id):
                    removed += 1
            except OSError as exc:
                logger.warning(
                    "Failed sweeping typing indicator %s: %s", indicator.user_id, exc
                )
        return removed
