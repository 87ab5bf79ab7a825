"""Generation request router.

Entry point for callers (CLI, UI): validates input locally, sends it through
the strategy selected at startup and normalizes the answer. Callers get the
same records and the same typed errors whichever path executed.
"""

from typing import Optional

from crisper.images.images import prepare_image
from crisper.models.models import MAX_INGREDIENTS, MIN_INGREDIENTS, GeneratedRecipe, RecipeRequest
from crisper.normalizer.normalizer import extract_candidate_text, parse_ingredient_names, parse_recipes
from crisper.prompts.prompts import RECIPE_GENERATION_CONFIG, build_recipe_prompt
from crisper.router.strategies import GenerationStrategy
from crisper.utils.errors import ValidationError
from crisper.utils.logger import logger


def ensure_ingredient_count(request: RecipeRequest) -> None:
    """Reject requests outside the 3-10 ingredient range.

    Raises:
        ValidationError: Too few or too many ingredients.
    """
    count = len(request.ingredients)
    if count < MIN_INGREDIENTS:
        raise ValidationError(f"Please add at least {MIN_INGREDIENTS} ingredients to generate recipes.")
    if count > MAX_INGREDIENTS:
        raise ValidationError(f"Please use at most {MAX_INGREDIENTS} ingredients.")


class GenerationRouter:
    """Routes generation and image-analysis calls through one strategy."""

    def __init__(self, strategy: GenerationStrategy) -> None:
        self.strategy = strategy

    @property
    def requires_credential(self) -> bool:
        """True when the caller must supply a session credential (direct path)."""
        return self.strategy.requires_credential

    async def generate(self, request: RecipeRequest) -> list[GeneratedRecipe]:
        """Generate recipes for the request's ingredients and filters.

        Raises:
            ValidationError: Before any network call, for an out-of-range ingredient list.
            CredentialExpiredError: Direct path without a valid session credential.
            AuthorizationError, ThrottledError, ConfigurationError: Proxy path rejections.
            UpstreamError: The model API failed.
            MalformedContentError: The model answer could not be parsed.
        """
        ensure_ingredient_count(request)

        prompt = build_recipe_prompt(request)
        logger.info(f"Generating recipes for {len(request.ingredients)} ingredients")
        body = await self.strategy.generate_content(prompt, dict(RECIPE_GENERATION_CONFIG))

        recipes = parse_recipes(extract_candidate_text(body))
        logger.info(f"Received {len(recipes)} recipes")
        return recipes

    async def analyze_image(self, image_base64: str, mime_type: Optional[str] = None) -> list[str]:
        """Detect ingredient names in a photo.

        Args:
            image_base64: Plain base64 or a data: URL.
            mime_type: Declared MIME type (detected type takes precedence).

        Returns:
            Lowercased, deduplicated ingredient names.
        """
        image = prepare_image(image_base64, mime_type)
        logger.info(f"Analyzing image ({image.size_bytes / 1024:.1f}KB, {image.mime_type})")
        body = await self.strategy.analyze_image(image.image_base64, image.mime_type)

        ingredients = parse_ingredient_names(extract_candidate_text(body))
        logger.info(f"Detected {len(ingredients)} ingredients")
        return ingredients
