from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional

from usbportal.domain.ports import SettingsPort

SETTINGS_FILENAME = "usbportal_settings.json"


class SettingsLocal(SettingsPort):
    """Local filesystem storage for portal client settings (JSON)."""

    def __init__(self, root_dir: str = ".") -> None:
        self.root = root_dir

    @property
    def path(self) -> str:
        return os.path.join(self.root, SETTINGS_FILENAME)

    def save_settings(self, payload: Dict[str, Any]) -> None:
        os.makedirs(self.root, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)

    def load_settings(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path}: expected a JSON object")
        return data
