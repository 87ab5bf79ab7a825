"""Preferences the CLI keeps between runs.

One JSON document (UserPreferences, camelCase keys) at PREFERENCES_FILE holds:
- whether the user has run the CLI before
- the last filters they asked for
- recently used ingredients, most recent first, deduplicated and capped
- recipes they chose to keep, unique by id

This file is durable, unlike the session credential store, so it must never
hold an API key. Plaintext keys written here by older releases are purged
on startup. A missing or corrupt file reads as empty preferences.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import ValidationError as SchemaError

from crisper.credentials.session_store import clear_legacy_keys
from crisper.models.models import GeneratedRecipe, RecipeFilters, SavedRecipe, UserPreferences
from crisper.utils.config import config
from crisper.utils.logger import logger


class PreferencesStore:
    """Reads and writes the CLI preferences file."""

    def __init__(self, path: Optional[str] = None, recent_limit: Optional[int] = None) -> None:
        """
        Args:
            path: Preferences file. Defaults to PREFERENCES_FILE.
            recent_limit: Recent ingredients to keep. Defaults to RECENT_INGREDIENTS_LIMIT.
        """
        self.path = Path(path or config.PREFERENCES_FILE)
        self.recent_limit = recent_limit or config.RECENT_INGREDIENTS_LIMIT

    def _read_raw(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable preferences file {self.path}: {type(e).__name__}")
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write_raw(self, raw: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(raw, indent=2), encoding="utf-8")

    def load(self) -> UserPreferences:
        try:
            return UserPreferences.model_validate(self._read_raw())
        except SchemaError as e:
            logger.warning(f"Ignoring invalid preferences in {self.path}: {e.error_count()} errors")
            return UserPreferences()

    def save(self, preferences: UserPreferences) -> None:
        self._write_raw(preferences.model_dump(mode="json", by_alias=True))

    def purge_legacy_keys(self) -> list[str]:
        """Remove plaintext API keys that older releases kept in this file."""
        raw = self._read_raw()
        removed = clear_legacy_keys(raw)
        if removed:
            self._write_raw(raw)
        return removed

    # First visit

    def is_first_visit(self) -> bool:
        return not self.load().visited

    def mark_visited(self) -> None:
        preferences = self.load()
        if not preferences.visited:
            preferences.visited = True
            self.save(preferences)

    # Filter preferences

    def get_filters(self) -> Optional[RecipeFilters]:
        return self.load().filters

    def save_filters(self, filters: RecipeFilters) -> None:
        preferences = self.load()
        preferences.filters = filters
        self.save(preferences)

    # Recent ingredients

    def get_recent_ingredients(self) -> list[str]:
        return self.load().recent_ingredients

    def add_recent_ingredients(self, ingredients: Iterable[str]) -> list[str]:
        """Put ingredients at the front of the recent list.

        Returns:
            The updated list: newest first, no duplicates, at most recent_limit names.
        """
        preferences = self.load()
        recent: list[str] = []
        for name in [*ingredients, *preferences.recent_ingredients]:
            name = name.strip()
            if name and name not in recent:
                recent.append(name)
        preferences.recent_ingredients = recent[: self.recent_limit]
        self.save(preferences)
        return preferences.recent_ingredients

    # Saved recipes

    def get_saved_recipes(self) -> list[SavedRecipe]:
        return self.load().saved_recipes

    def save_recipe(self, recipe: GeneratedRecipe) -> list[SavedRecipe]:
        """Keep a recipe unless one with the same id is already saved."""
        preferences = self.load()
        if not any(saved.id == recipe.id for saved in preferences.saved_recipes):
            saved = SavedRecipe.model_validate({**recipe.model_dump(), "saved_at": datetime.now(timezone.utc)})
            preferences.saved_recipes.append(saved)
            self.save(preferences)
        return preferences.saved_recipes

    def remove_saved_recipe(self, recipe_id: str) -> list[SavedRecipe]:
        preferences = self.load()
        preferences.saved_recipes = [saved for saved in preferences.saved_recipes if saved.id != recipe_id]
        self.save(preferences)
        return preferences.saved_recipes

    def is_recipe_saved(self, recipe_id: str) -> bool:
        return any(saved.id == recipe_id for saved in self.load().saved_recipes)
