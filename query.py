#!/usr/bin/env python3
"""Ad hoc recipe generator for the Crisper recipe service.

Generate recipes from the command line without any UI.

Usage:
    python query.py chicken rice garlic
    python query.py --diet vegetarian --time 30 --difficulty Easy tomato basil pasta
    python query.py --cuisine Italian --calories 600 chicken tomato onion
    python query.py --image images/fridge.jpg egg   # Detected ingredients are merged in
    python query.py --debug chicken rice garlic       # Show full JSON records
    python query.py --save chicken rice garlic        # Keep the generated recipes
    python query.py --saved                           # List kept recipes
    python query.py --unsave recipe-1700000000000-0   # Forget a kept recipe
    python query.py --recent                          # List recently used ingredients

Filters given on the command line are remembered and reused when a later run
gives none. Preferences live in PREFERENCES_FILE; API keys are never written
there.

Behavior depends on DEPLOYMENT_MODE:
- development: asks for a Gemini API key, validates it, keeps it encrypted in
  this process's session store and calls Gemini directly
- production: calls the proxy at PROXY_BASE_URL; no key is ever requested
"""

import asyncio
import base64
import getpass
import sys
from pathlib import Path
from typing import Optional

import pydantic
from pydantic.alias_generators import to_camel
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from crisper.credentials.session_store import SessionCredentialStore
from crisper.credentials.validation import submit_credential
from crisper.models.models import GeneratedRecipe, RecipeFilters, RecipeRequest
from crisper.preferences.preferences import PreferencesStore
from crisper.router.router import GenerationRouter
from crisper.router.strategies import select_strategy
from crisper.utils.config import config
from crisper.utils.errors import (
    ConfigurationError,
    CredentialExpiredError,
    CrisperError,
    MalformedContentError,
    ThrottledError,
    ValidationError,
)
from crisper.utils.logger import logger

console = Console()

# RecipeFilters field -> command-line flag
FILTER_FLAGS = {
    "dietary": "--diet",
    "cooking_time": "--time",
    "difficulty": "--difficulty",
    "cuisine": "--cuisine",
    "max_calories": "--calories",
}
FLAG_FOR_FIELD = {**FILTER_FLAGS, **{to_camel(field): flag for field, flag in FILTER_FLAGS.items()}}


def describe_error(error: CrisperError) -> str:
    """User-facing text for each error kind."""
    if isinstance(error, ConfigurationError):
        return "The recipe service is unavailable right now."
    if isinstance(error, ThrottledError):
        return f"{error.message} (slow down and try again shortly)"
    if isinstance(error, MalformedContentError):
        return "The chef got confused. Please try again; your ingredients and filters are unchanged."
    if isinstance(error, CredentialExpiredError):
        return "Your API key expired. Run again and enter it once more."
    return error.message


def render_recipe(recipe: GeneratedRecipe) -> None:
    """Print one recipe as a rich panel."""
    meta = [
        f"⏱ {recipe.cooking_time} min" if recipe.cooking_time else None,
        recipe.difficulty,
        f"🍽 {recipe.servings} servings" if recipe.servings else None,
        f"🔥 {recipe.calories} kcal" if recipe.calories else None,
        recipe.cuisine,
        f"{recipe.match_percentage}% match",
    ]
    lines = [" · ".join(item for item in meta if item)]
    if recipe.description:
        lines.append(f"\n{recipe.description}")

    if recipe.ingredients:
        table = Table(show_header=True, header_style="bold", box=None)
        table.add_column("Ingredient")
        table.add_column("Amount")
        table.add_column("Have")
        for item in recipe.ingredients:
            table.add_row(item.name, item.amount or "", "✓" if item.user_has else "")
    else:
        table = None

    console.print(Panel("\n".join(lines), title=f"[bold cyan]{recipe.name}[/bold cyan]", expand=False))
    if table is not None:
        console.print(table)
    for step, instruction in enumerate(recipe.instructions, start=1):
        console.print(f"  [bold]{step}.[/bold] {instruction}")
    if recipe.tips:
        console.print(f"  [yellow]Tip:[/yellow] {recipe.tips}")
    console.print()


async def ensure_credential(store: SessionCredentialStore) -> None:
    """Prompt for a key until one validates (development mode only)."""
    while not store.has_valid():
        raw_key = getpass.getpass("Gemini API key: ")
        if not raw_key:
            raise CredentialExpiredError("An API key is required in development mode.")
        try:
            await submit_credential(store, raw_key)
        except ValidationError as e:
            console.print(f"[red]✗ {e.message}[/red]")
    console.print(f"[dim]API key active for {store.remaining_minutes()} minutes[/dim]")


def load_image(image_path: str) -> str:
    image_file = Path(image_path)
    if not image_file.exists():
        raise ValidationError(f"Image file not found: {image_path}")
    logger.info(f"Loading image: {image_file.name}...")
    return base64.b64encode(image_file.read_bytes()).decode("ascii")


def build_filters(dietary: list[str], values: dict) -> RecipeFilters:
    """Build filters from command-line values, reporting bad values by flag."""
    try:
        return RecipeFilters(dietary=dietary, **values)
    except pydantic.ValidationError as e:
        problems = []
        for err in e.errors():
            field = str(err["loc"][0]) if err["loc"] else "filters"
            problems.append(f"{FLAG_FOR_FIELD.get(field, field)}: {err['msg']}")
        raise ValidationError("Invalid filter value. " + "; ".join(problems))


async def run_query(
    ingredients: list[str],
    filters: RecipeFilters,
    image_path: Optional[str] = None,
    debug: bool = False,
    preferences: Optional[PreferencesStore] = None,
    save: bool = False,
) -> None:
    """Run one generation (optionally seeded by an image) and print the recipes."""
    store = SessionCredentialStore()
    router = GenerationRouter(select_strategy(config, store))

    try:
        if router.requires_credential:
            await ensure_credential(store)

        if image_path:
            detected = await router.analyze_image(load_image(image_path))
            console.print(f"[green]✓ Detected:[/green] {', '.join(detected) or 'nothing recognizable'}")
            ingredients = ingredients + detected

        request = RecipeRequest(ingredients=ingredients, filters=filters)
        with console.status("Cooking up recipes..."):
            recipes = await router.generate(request)
    finally:
        store.clear()

    if preferences is not None:
        preferences.add_recent_ingredients(request.ingredients)
        if save:
            for recipe in recipes:
                preferences.save_recipe(recipe)

    console.print()
    if debug:
        console.print("[bold cyan]Debug Mode: Full Response[/bold cyan]")
        console.print_json(data=[recipe.model_dump(by_alias=True) for recipe in recipes])
        console.print()

    for recipe in recipes:
        render_recipe(recipe)
    if save and recipes:
        console.print(f"[green]✓ Saved {len(recipes)} recipes[/green] (list them with --saved)")


def show_saved(preferences: PreferencesStore) -> None:
    saved = preferences.get_saved_recipes()
    if not saved:
        console.print("No saved recipes yet. Add --save to a query to keep its recipes.")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Id")
    table.add_column("Recipe")
    table.add_column("Saved")
    for recipe in saved:
        table.add_row(recipe.id, recipe.name, recipe.saved_at.strftime("%Y-%m-%d %H:%M"))
    console.print(table)


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python query.py [--diet TAG] [--time MIN] [--difficulty LEVEL] [--cuisine NAME]")
        print("                       [--calories MAX] [--image PATH] [--save] [--debug] ingredient [ingredient ...]")
        print("       python query.py --saved | --recent | --unsave RECIPE_ID")
        print("")
        print("Examples:")
        print("  python query.py chicken rice garlic")
        print("  python query.py --diet vegetarian --time 30 tomato basil pasta")
        print("  python query.py --image images/fridge.jpg egg")
        sys.exit(1)

    dietary: list[str] = []
    filter_values: dict = {}
    image_path = None
    debug_mode = False
    save_recipes = False
    command = None
    unsave_id = None
    value_flags = {flag: field for field, flag in FILTER_FLAGS.items() if flag != "--diet"}
    argv_start = 1

    while argv_start < len(sys.argv) and sys.argv[argv_start].startswith("--"):
        flag = sys.argv[argv_start]
        if flag in ("--debug", "--save", "--saved", "--recent"):
            debug_mode = debug_mode or flag == "--debug"
            save_recipes = save_recipes or flag == "--save"
            if flag in ("--saved", "--recent"):
                command = flag
            argv_start += 1
            continue
        if flag not in value_flags and flag not in ("--diet", "--image", "--unsave"):
            print(f"Unknown flag: {flag}")
            sys.exit(1)
        if argv_start + 1 >= len(sys.argv):
            print(f"Error: {flag} flag requires a value")
            sys.exit(1)
        value = sys.argv[argv_start + 1]
        if flag == "--diet":
            dietary.append(value)
        elif flag == "--image":
            image_path = value
        elif flag == "--unsave":
            command, unsave_id = flag, value
        else:
            filter_values[value_flags[flag]] = value
        argv_start += 2

    preferences = PreferencesStore()
    try:
        preferences.purge_legacy_keys()
        if preferences.is_first_visit():
            console.print("[bold cyan]Welcome to Crisper![/bold cyan] List at least 3 ingredients to get recipes.")
            preferences.mark_visited()

        if command == "--saved":
            show_saved(preferences)
            sys.exit(0)
        if command == "--recent":
            console.print(", ".join(preferences.get_recent_ingredients()) or "No recent ingredients yet.")
            sys.exit(0)
        if command == "--unsave":
            was_saved = preferences.is_recipe_saved(unsave_id)
            preferences.remove_saved_recipe(unsave_id)
            console.print(f"Removed {unsave_id}" if was_saved else f"No saved recipe with id {unsave_id}")
            sys.exit(0)

        if dietary or filter_values:
            query_filters = build_filters(dietary, filter_values)
            preferences.save_filters(query_filters)
        else:
            query_filters = preferences.get_filters() or RecipeFilters()

        asyncio.run(
            run_query(
                sys.argv[argv_start:],
                query_filters,
                image_path=image_path,
                debug=debug_mode,
                preferences=preferences,
                save=save_recipes,
            )
        )
    except CrisperError as e:
        console.print(f"[red]✗ {describe_error(e)}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("\nQuery interrupted by user.")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Query execution failed: {e}", exc_info=True)
        sys.exit(1)
