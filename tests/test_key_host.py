import pytest

import config
from key_host import EnvironmentKeyHost


@pytest.mark.asyncio
async def test_environment_key_counts_as_selected(api_key):
    assert await EnvironmentKeyHost().has_selected_api_key() is True


@pytest.mark.asyncio
async def test_no_key_is_not_selected(no_api_key):
    assert await EnvironmentKeyHost().has_selected_api_key() is False


@pytest.mark.asyncio
async def test_select_reloads_env_file(no_api_key, monkeypatch):
    def fake_reload():
        monkeypatch.setenv("GEMINI_API_KEY", "from-dotenv")

    monkeypatch.setattr(config, "reload_env", fake_reload)
    host = EnvironmentKeyHost()

    await host.open_select_key()

    assert await host.has_selected_api_key() is True
    assert config.get_api_key() == "from-dotenv"
