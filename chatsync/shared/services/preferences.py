"""User preferences - persistent settings stored in ~/.chatsync/preferences.json.

Holds per-user choices that outlive a single session view: the model picked
for new turns and the project new sessions are tagged with.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from chatsync.shared.services.durable_write import atomic_write_text

logger = logging.getLogger(__name__)

PREFS_PATH = Path.home() / ".chatsync" / "preferences.json"


@dataclass
class UserPreferences:
    """User preference settings.

    Attributes:
        selected_model: Model id used for inference, or None for the
            configured default.
        active_project_id: Project tag applied to newly created sessions.
        show_archived: Whether session listings include archived sessions.
    """

    selected_model: str | None = None
    active_project_id: str | None = None
    show_archived: bool = False

    def validate(self) -> None:
        """Ensure all values are within allowed ranges."""
        if not isinstance(self.selected_model, str) or not self.selected_model.strip():
            self.selected_model = None
        else:
            # Older front ends stored the id JSON-quoted.
            self.selected_model = self.selected_model.strip().strip('"')
        if not isinstance(self.active_project_id, str) or not self.active_project_id.strip():
            self.active_project_id = None
        if not isinstance(self.show_archived, bool):
            self.show_archived = False

    def save(self, path: Path | None = None) -> None:
        """Persist preferences to disk."""
        target = path or PREFS_PATH
        try:
            atomic_write_text(target, json.dumps(asdict(self), indent=2))
        except OSError:
            logger.debug("Failed to save preferences to %s", target)

    @classmethod
    def load(cls, path: Path | None = None) -> UserPreferences:
        """Load preferences from disk, returning defaults if missing/corrupt."""
        target = path or PREFS_PATH
        try:
            if target.exists():
                data = json.loads(target.read_text())
                prefs = cls(**{
                    k: v for k, v in data.items()
                    if k in cls.__dataclass_fields__
                })
                prefs.validate()
                logger.debug("Loaded preferences from %s", target)
                return prefs
            else:
                logger.debug("Preferences file not found at %s; using defaults", target)
        except (OSError, ValueError, TypeError):
            logger.warning("Failed to load preferences from %s; using defaults", target)
        return cls()
