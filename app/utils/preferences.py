"""
User theme preference.
Process-wide setting read from storage at startup and written on change.
Has no bearing on the feed engine.
"""

import json
import logging
from pathlib import Path
from typing import Callable, List, Optional

from app.utils.config import get_preferences_config

logger = logging.getLogger(__name__)

THEMES = ("light", "dark")
THEME_KEY = "twosides-theme"


class ThemePreference:
    """
    Light/dark theme with file-backed persistence.
    """

    def __init__(self, path: Optional[str] = None, default_theme: Optional[str] = None):
        """
        Initialize the preference.

        Args:
            path: JSON file holding the preference. If None, uses config.
            default_theme: Theme used when nothing valid is stored
        """
        config = get_preferences_config(path)
        self.path = Path(config["path"]).expanduser()
        self.default_theme = default_theme or config["default_theme"]
        if self.default_theme not in THEMES:
            raise ValueError(f"Unknown theme {self.default_theme!r}")

        self.theme = self.default_theme
        self._listeners: List[Callable[[str], None]] = []

    def load(self, prefers_dark: Optional[bool] = None) -> str:
        """
        Initialize from storage.

        Args:
            prefers_dark: System hint used when nothing is stored

        Returns:
            The active theme
        """
        stored = self._read()
        if stored:
            self.theme = stored
        elif prefers_dark is not None:
            self.theme = "dark" if prefers_dark else "light"
        else:
            self.theme = self.default_theme
        return self.theme

    @property
    def is_stored(self) -> bool:
        return self._read() is not None

    def set(self, theme: str) -> str:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme {theme!r}; expected one of {', '.join(THEMES)}")

        changed = theme != self.theme
        self.theme = theme
        self._write()

        if changed:
            for listener in list(self._listeners):
                try:
                    listener(theme)
                except Exception as e:
                    logger.error(f"Theme listener failed: {e}")
        return self.theme

    def toggle(self) -> str:
        return self.set("dark" if self.theme == "light" else "light")

    def on_change(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def _read(self) -> Optional[str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable preferences file {self.path}: {e}")
            return None

        theme = data.get(THEME_KEY) if isinstance(data, dict) else None
        if theme not in THEMES:
            if theme is not None:
                logger.warning(f"Ignoring unknown stored theme {theme!r}")
            return None
        return theme

    def _write(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps({THEME_KEY: self.theme}), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to persist theme preference: {e}")


# Global preference instance
theme_preference: Optional[ThemePreference] = None


def get_theme_preference() -> ThemePreference:
    """
    Get the global theme preference, loading it on first use.

    Returns:
        Theme preference
    """
    global theme_preference
    if theme_preference is None:
        theme_preference = ThemePreference()
        theme_preference.load()
    return theme_preference
