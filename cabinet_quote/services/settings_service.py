from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from cabinet_quote.errors import ValidationError
from cabinet_quote.models.settings import QuoteSettings

log = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[2] / "data"


class SettingsService:
    """Reads and writes data/settings.json as a QuoteSettings object."""

    def __init__(self, data_dir: Optional[str | Path] = None):
        base = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        self.path = base / "settings.json"

    def _load_json(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            log.warning("Unreadable settings file %s (%s), using defaults", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> QuoteSettings:
        raw = self._load_json()
        try:
            return QuoteSettings.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(f"Invalid settings in {self.path}", e) from e

    def update(self, **changes: Any) -> QuoteSettings:
        current = self.load().model_dump(mode="json")
        merged = {**current, **changes}
        try:
            settings = QuoteSettings.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Invalid settings", e) from e
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(settings.model_dump(mode="json"), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        return settings
