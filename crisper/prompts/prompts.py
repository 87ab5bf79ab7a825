"""Prompts and generation settings for recipe generation and image analysis.

The recipe prompt is kept compact: ingredients, a one-line filter summary and
the expected JSON shape. The model is told to answer with bare JSON; the
normalizer still tolerates a code fence around it.
"""

from typing import Any

from crisper.models.models import DEFAULT_COOKING_TIME, RecipeRequest


RECIPES_PER_REQUEST = 3

RECIPE_GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.8,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 2048,
}

# Used by the proxy when a client sends no generationConfig
PROXY_FALLBACK_GENERATION_CONFIG: dict[str, Any] = {**RECIPE_GENERATION_CONFIG, "maxOutputTokens": 4096}

VISION_GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.3,
    "maxOutputTokens": 1024,
}

IMAGE_ANALYSIS_PROMPT = """Analyze this image and identify all visible food ingredients and items.
Return ONLY a JSON array of ingredient names as strings, lowercase, singular form.
Example: ["chicken", "tomato", "onion", "garlic", "olive oil"]
Do not include non-food items. Return ONLY the JSON array."""

RECIPE_SHAPE = (
    "{id,name,description,cookingTime,difficulty,servings,calories,cuisine,dietaryTags[],"
    "matchPercentage,ingredients[{name,amount,userHas}],instructions[],"
    "nutritionalInfo:{protein,carbs,fat,fiber},tips}"
)


def build_filter_summary(request: RecipeRequest) -> str:
    """Render active filters as "diet:vegan | time:<30min | level:Easy"."""
    filters = request.filters
    parts = []
    if filters.dietary:
        parts.append(f"diet:{','.join(filters.dietary)}")
    if filters.cuisine:
        parts.append(f"cuisine:{filters.cuisine}")
    if filters.cooking_time != DEFAULT_COOKING_TIME:
        parts.append(f"time:<{filters.cooking_time}min")
    if filters.difficulty != "Any":
        parts.append(f"level:{filters.difficulty}")
    if filters.max_calories:
        parts.append(f"calories:<{filters.max_calories}")
    return " | ".join(parts)


def build_recipe_prompt(request: RecipeRequest, count: int = RECIPES_PER_REQUEST) -> str:
    filter_summary = build_filter_summary(request)
    filter_line = f"\nFilters: {filter_summary}" if filter_summary else ""
    return (
        f"Generate {count} recipes using: {', '.join(request.ingredients)}{filter_line}\n\n"
        f"Return JSON array. Each recipe: {RECIPE_SHAPE}\n\n"
        "JSON only, no markdown."
    )
