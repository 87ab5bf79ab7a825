"""Data models and schemas for the Crisper recipe service.

Defines Pydantic models for request/response validation and domain objects.
All models use Pydantic v2. Upstream and proxy payloads use camelCase on the
wire; the models expose snake_case attributes and accept either spelling.
"""

import re
from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


MIN_INGREDIENTS = 3
MAX_INGREDIENTS = 10
DEFAULT_MATCH_PERCENTAGE = 75
DEFAULT_COOKING_TIME = 60

Difficulty = Literal["Any", "Easy", "Medium", "Hard"]


def _coerce_int(value: Any) -> Any:
    """Accept model noise such as "30 minutes" or "450 kcal" for integer fields."""
    if isinstance(value, str):
        match = re.search(r"\d+", value)
        return int(match.group()) if match else None
    if isinstance(value, float):
        return int(round(value))
    return value


def _coerce_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class CamelModel(BaseModel):
    """Base model reading and writing camelCase wire names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class RecipeFilters(CamelModel):
    """Optional constraints applied to recipe generation."""

    dietary: Annotated[
        List[str], Field(default_factory=list, description="Dietary tags, e.g. vegetarian, gluten-free")
    ]
    cooking_time: Annotated[int, Field(ge=5, le=240, description="Maximum cooking time in minutes (5-240)")] = (
        DEFAULT_COOKING_TIME
    )
    difficulty: Annotated[Difficulty, Field(description="Difficulty level or 'Any'")] = "Any"
    cuisine: Annotated[Optional[str], Field(max_length=50, description="Preferred cuisine")] = None
    max_calories: Annotated[Optional[int], Field(ge=50, le=5000, description="Calorie cap per serving")] = None

    @field_validator("dietary", mode="before")
    @classmethod
    def normalize_dietary(cls, v: Any) -> List[str]:
        """Lowercase, trim and deduplicate dietary tags."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        tags: List[str] = []
        for tag in v:
            tag = str(tag).strip().lower()
            if tag and tag not in tags:
                tags.append(tag)
        return tags


class RecipeRequest(CamelModel):
    """Normalized input to recipe generation.

    Ingredient names are trimmed, lowercased and deduplicated while keeping
    their first-seen order. The 3-10 item bound is enforced by the router so
    that an out-of-range request is reported as a domain validation error
    before any network call.
    """

    ingredients: Annotated[List[str], Field(description="Ingredient names (3-10 after normalization)")]
    filters: Annotated[RecipeFilters, Field(default_factory=RecipeFilters)]

    @field_validator("ingredients", mode="before")
    @classmethod
    def normalize_ingredients(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, (list, tuple)):
            raise ValueError("ingredients must be a list of names")
        names: List[str] = []
        for item in v:
            name = str(item).strip().lower()
            if name and name not in names:
                names.append(name)
        return names


class RecipeIngredient(CamelModel):
    """One ingredient line of a generated recipe."""

    name: Annotated[str, Field(min_length=1, max_length=100)]
    amount: Annotated[Optional[str], Field(max_length=100)] = None
    user_has: Annotated[bool, Field(description="True if the user listed this ingredient")] = False

    @field_validator("amount", mode="before")
    @classmethod
    def stringify_amount(cls, v: Any) -> Any:
        return _coerce_text(v)


class NutritionalInfo(CamelModel):
    """Per-serving nutrition facts as reported by the model (free-form units)."""

    protein: Optional[str] = None
    carbs: Optional[str] = None
    fat: Optional[str] = None
    fiber: Optional[str] = None

    @field_validator("protein", "carbs", "fat", "fiber", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> Any:
        return _coerce_text(v)


class GeneratedRecipe(CamelModel):
    """Domain model for a generated recipe.

    Only id and name are required. The normalizer backfills id and
    match_percentage before validation, so both are always populated on
    records it returns.
    """

    id: Annotated[str, Field(min_length=1, description="Unique id within the response batch")]
    name: Annotated[str, Field(min_length=1, max_length=200, description="Recipe name (1-200 chars)")]
    description: Annotated[Optional[str], Field(max_length=1000)] = None
    cooking_time: Annotated[Optional[int], Field(ge=0, le=1440, description="Minutes (0-1440)")] = None
    difficulty: Optional[str] = None
    servings: Annotated[Optional[int], Field(ge=1, le=100)] = None
    calories: Annotated[Optional[int], Field(ge=0, le=10000)] = None
    cuisine: Optional[str] = None
    dietary_tags: Annotated[List[str], Field(default_factory=list)]
    match_percentage: Annotated[int, Field(ge=0, le=100)] = DEFAULT_MATCH_PERCENTAGE
    ingredients: Annotated[List[RecipeIngredient], Field(default_factory=list, max_length=100)]
    instructions: Annotated[List[str], Field(default_factory=list, max_length=100)]
    nutritional_info: Optional[NutritionalInfo] = None
    tips: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        return _coerce_text(v)

    @field_validator("cooking_time", "servings", "calories", "match_percentage", mode="before")
    @classmethod
    def coerce_numbers(cls, v: Any) -> Any:
        return _coerce_int(v)

    @field_validator("dietary_tags", "instructions", mode="before")
    @classmethod
    def wrap_single_string(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("tips", mode="before")
    @classmethod
    def join_tips(cls, v: Any) -> Any:
        """Models sometimes return tips as a list of sentences."""
        if isinstance(v, list):
            return " ".join(str(item).strip() for item in v if str(item).strip()) or None
        return v


class SavedRecipe(GeneratedRecipe):
    """A recipe the user kept, stamped with when it was saved."""

    saved_at: datetime


class UserPreferences(CamelModel):
    """Everything the CLI remembers between runs."""

    visited: bool = False
    filters: Optional[RecipeFilters] = None
    recent_ingredients: Annotated[List[str], Field(default_factory=list)]
    saved_recipes: Annotated[List[SavedRecipe], Field(default_factory=list)]


class GenerateProxyRequest(CamelModel):
    """Body of POST {prefix}/generate."""

    prompt: Annotated[str, Field(min_length=1, description="Prompt text forwarded to the model")]
    generation_config: Optional[dict[str, Any]] = None


class AnalyzeImageProxyRequest(CamelModel):
    """Body of POST {prefix}/analyze-image."""

    image_base64: Annotated[str, Field(min_length=1, description="Base64-encoded image (no data: prefix)")]
    mime_type: Annotated[str, Field(pattern=r"^image/[a-z0-9.+-]+$")] = "image/jpeg"


class ErrorResponse(BaseModel):
    """Error body returned by the proxy.

    Gate and server errors carry {error, message}. Errors relayed from the
    model API carry {error, details, upstream: true} instead, so the client
    can tell a Gemini 403 from an origin rejection.
    """

    error: str
    message: Optional[str] = None
    details: Optional[Any] = None
    upstream: bool = False

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_defaults=True)
