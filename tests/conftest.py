from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

import gemini_service


COZY_ANALYSIS = {
    "trends": ["Wholesome storytelling", "Co-op farming", "Seasonal live events"],
    "mechanics": ["Crop rotation", "Relationship building", "Town decoration"],
    "monetization": ["Premium purchase", "Cosmetic DLC", "Season pass"],
}


def make_level(description="Climb the barn roof"):
    return {
        "level_description": description,
        "tilemap": [
            ["#", "#", "#", "#", "#"],
            ["#", ".", ".", ".", "#"],
            ["#", "#", "#", "#", "#"],
        ],
        "entities": [{"type": "coin", "position": {"x": 2, "y": 1}}],
        "player_start": {"x": 1, "y": 1},
        "goal_position": {"x": 3, "y": 1},
        "solvable_path": [{"x": 1, "y": 1}, {"x": 2, "y": 1}, {"x": 3, "y": 1}],
        "validity_check": "Walk right to reach the goal.",
    }


def make_response(text, finish_reason="STOP"):
    return SimpleNamespace(
        text=text,
        candidates=[SimpleNamespace(finish_reason=finish_reason)],
    )


class FakeKeyHost:
    def __init__(self, selected=True):
        self.selected = selected
        self.open_calls = 0

    async def has_selected_api_key(self):
        return self.selected

    async def open_select_key(self):
        self.open_calls += 1


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.delenv("API_KEY", raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")


@pytest.fixture
def no_api_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)


@pytest.fixture
def genai_client(monkeypatch):
    """Replace the google-genai client with a mock; set .generate_content return values in tests."""
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    client.aio.aclose = AsyncMock()
    factory = MagicMock(return_value=client)
    monkeypatch.setattr(gemini_service, "_new_client", factory)
    client.factory = factory
    return client


@pytest.fixture
def fake_service():
    return SimpleNamespace(
        generate_market_analysis=AsyncMock(return_value=COZY_ANALYSIS),
        generate_game_levels=AsyncMock(return_value=[make_level(), make_level("Cross the pond")]),
        generate_prototype=AsyncMock(),
    )
