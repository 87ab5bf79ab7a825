"""End-to-end tests against the live Gemini API.

Covers both deployment paths:
- Direct path: validated key in the session store, GenerationRouter with DirectStrategy
- Proxy path: FastAPI app holding the server key, driven through TestClient
"""

import base64
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from crisper.credentials.session_store import SessionCredentialStore
from crisper.credentials.validation import submit_credential, validate_api_key
from crisper.gateway.server import create_app
from crisper.models.models import RecipeFilters, RecipeRequest
from crisper.normalizer.normalizer import extract_candidate_text, parse_recipes
from crisper.prompts.prompts import build_recipe_prompt
from crisper.router.router import GenerationRouter
from crisper.router.strategies import DirectStrategy
from crisper.utils.config import Config


pytestmark = pytest.mark.integration


@pytest.fixture
def store():
    return SessionCredentialStore(storage={}, fingerprint="integration-tests")


def sample_image_base64() -> str:
    output = BytesIO()
    Image.new("RGB", (64, 64), color=(230, 30, 30)).save(output, format="JPEG")
    return base64.b64encode(output.getvalue()).decode()


class TestDirectPath:
    """Development mode: the client holds the key."""

    @pytest.mark.asyncio
    async def test_invalid_key_rejected(self, gemini_api_key):
        assert await validate_api_key("AIza-definitely-not-a-real-key") is False

    @pytest.mark.asyncio
    async def test_generate_three_recipes(self, gemini_api_key, store):
        await submit_credential(store, gemini_api_key)
        router = GenerationRouter(DirectStrategy(store))

        recipes = await router.generate(
            RecipeRequest(
                ingredients=["chicken", "rice", "garlic"],
                filters=RecipeFilters(cooking_time=45, difficulty="Easy"),
            )
        )

        assert len(recipes) == 3
        assert all(recipe.id and recipe.name for recipe in recipes)
        assert len({recipe.id for recipe in recipes}) == 3
        assert store.remaining_minutes() == 30

    @pytest.mark.asyncio
    async def test_analyze_image_returns_names(self, gemini_api_key, store):
        await submit_credential(store, gemini_api_key)
        router = GenerationRouter(DirectStrategy(store))

        names = await router.analyze_image(sample_image_base64(), "image/jpeg")

        assert isinstance(names, list)
        assert all(name == name.lower() for name in names)


class TestProxyPath:
    """Production mode: the proxy holds the key."""

    @pytest.fixture
    def client(self, gemini_api_key, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", gemini_api_key)
        monkeypatch.delenv("PROXY_PREFIX", raising=False)
        cfg = Config()
        return TestClient(create_app(cfg))

    def test_generate_through_proxy(self, client):
        prompt = build_recipe_prompt(RecipeRequest(ingredients=["tomato", "basil", "pasta"]))

        response = client.post(
            "/api/generate", json={"prompt": prompt}, headers={"Origin": "http://localhost:5173"}
        )

        assert response.status_code == 200
        recipes = parse_recipes(extract_candidate_text(response.json()))
        assert recipes
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"

    def test_foreign_origin_blocked_before_upstream(self, client):
        response = client.post(
            "/api/generate", json={"prompt": "hello"}, headers={"Origin": "https://evil.example.com"}
        )

        assert response.status_code == 403

    def test_health(self, client):
        assert client.get("/health").json()["upstream_configured"] is True
