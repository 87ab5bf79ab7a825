"""Turns raw model output into structured recipe and ingredient records.

The model is asked for bare JSON but sometimes wraps it in a ```json fence.
Parsing is all-or-nothing: any failure raises MalformedContentError and no
partial list is ever returned.
"""

import json
import time
from typing import Any

from pydantic import ValidationError as SchemaValidationError

from crisper.models.models import DEFAULT_MATCH_PERCENTAGE, GeneratedRecipe
from crisper.utils.errors import MalformedContentError
from crisper.utils.logger import logger


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json / ``` and a trailing ``` around model output."""
    clean = text.strip()
    if clean.startswith("```json"):
        clean = clean[len("```json"):]
    elif clean.startswith("```"):
        clean = clean[len("```"):]
    if clean.endswith("```"):
        clean = clean[: -len("```")]
    return clean.strip()


def extract_candidate_text(body: dict[str, Any]) -> str:
    """Pull candidates[0].content.parts[0].text out of a generateContent body.

    Raises:
        MalformedContentError: If the body carries no text candidate.
    """
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        text = None
    if not text or not isinstance(text, str):
        raise MalformedContentError("No recipe content received. Please try again.")
    return text


def _load_json_array(raw_text: str) -> list:
    try:
        parsed = json.loads(strip_code_fence(raw_text))
    except (json.JSONDecodeError, TypeError, AttributeError) as e:
        logger.warning(f"Failed to parse model output as JSON: {e}")
        raise MalformedContentError()
    if not isinstance(parsed, list):
        logger.warning(f"Model output is a JSON {type(parsed).__name__}, expected an array")
        raise MalformedContentError()
    return parsed


def parse_recipes(raw_text: str) -> list[GeneratedRecipe]:
    """Parse a JSON array of recipes.

    Records without an id (or repeating an id already seen in the batch) get a
    generated "recipe-<ms>-<index>" id; records without matchPercentage get
    DEFAULT_MATCH_PERCENTAGE.

    Raises:
        MalformedContentError: Invalid JSON, not an array, or a record that
            does not validate.
    """
    records = _load_json_array(raw_text)
    batch_stamp = int(time.time() * 1000)

    recipes: list[GeneratedRecipe] = []
    seen_ids: set[str] = set()
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise MalformedContentError()

        record = dict(record)
        record_id = str(record.get("id") or "").strip()
        if not record_id or record_id in seen_ids:
            record_id = f"recipe-{batch_stamp}-{index}"
        record["id"] = record_id
        seen_ids.add(record_id)

        if record.get("matchPercentage") in (None, "") and record.get("match_percentage") in (None, ""):
            record["matchPercentage"] = DEFAULT_MATCH_PERCENTAGE

        try:
            recipes.append(GeneratedRecipe.model_validate(record))
        except SchemaValidationError as e:
            logger.warning(f"Recipe {index} failed validation: {e.error_count()} error(s)")
            raise MalformedContentError()

    return recipes


def parse_ingredient_names(raw_text: str) -> list[str]:
    """Parse a JSON array of ingredient names (vision path).

    Returns:
        Trimmed, lowercased names without duplicates, in model order.

    Raises:
        MalformedContentError: Invalid JSON, not an array, or a non-string item.
    """
    names: list[str] = []
    for item in _load_json_array(raw_text):
        if not isinstance(item, str):
            raise MalformedContentError("Could not read ingredients from the image. Please try again.")
        name = item.strip().lower()
        if name and name not in names:
            names.append(name)
    return names
