import pytest

import app as app_module
from app_state import PipelineController
from conftest import FakeKeyHost
from models import ApiErrorType, ApiServiceError, PrototypeResult


@pytest.fixture
def host():
    return FakeKeyHost(selected=True)


@pytest.fixture
def client(fake_service, host):
    app_module._controllers.clear()
    app_module.app.config["TESTING"] = True
    app_module.app.config["CONTROLLER_FACTORY"] = lambda: PipelineController(
        service=fake_service, host=host
    )
    with app_module.app.test_client() as test_client:
        yield test_client
    app_module.app.config.pop("CONTROLLER_FACTORY", None)
    app_module._controllers.clear()


def test_index_serves_page(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert b'sandbox' in resp.data
    assert b"AI Game Idea &amp; Prototype Generator" in resp.data


def test_initial_state(client):
    body = client.get("/api/state").get_json()
    assert body["stage"] == "HERO"
    assert body["api_key_selected"] is True
    assert body["active_keys"] == []


def test_actions_need_a_selected_key(client, host):
    host.selected = False

    resp = client.post("/api/start", json={})
    assert resp.status_code == 403

    body = client.post("/api/key/select", json={}).get_json()
    assert body["api_key_selected"] is True
    assert host.open_calls == 1
    assert client.post("/api/start", json={}).status_code == 200


def test_full_pipeline(client, fake_service):
    fake_service.generate_prototype.return_value = PrototypeResult.text("goal unreachable")

    assert client.post("/api/start", json={}).get_json()["stage"] == "ANALYSIS_INPUT"

    body = client.post("/api/analyze", json={"genre": "Cozy Farming Sim"}).get_json()
    assert body["stage"] == "IDEA_COMPLETE"
    assert len(body["levels"]) == 2
    assert body["analysis"]["trends"]

    body = client.post("/api/prototype", json={"index": 0}).get_json()
    assert body["stage"] == "PROTOTYPE_COMPLETE"
    assert body["prototype"] == {"type": "text", "content": "goal unreachable"}


def test_blank_genre_reports_error(client, fake_service):
    client.post("/api/start", json={})

    body = client.post("/api/analyze", json={"genre": "  "}).get_json()

    assert body["stage"] == "ANALYSIS_INPUT"
    assert body["error"] == "Please enter a game genre."
    fake_service.generate_market_analysis.assert_not_called()


def test_analyze_before_start_conflicts(client):
    resp = client.post("/api/analyze", json={"genre": "Racing"})
    assert resp.status_code == 409
    assert "error" in resp.get_json()


def test_analyze_rejects_non_string_genre(client):
    client.post("/api/start", json={})
    assert client.post("/api/analyze", json={"genre": 42}).status_code == 400


def test_prototype_index_validation(client):
    client.post("/api/start", json={})
    client.post("/api/analyze", json={"genre": "Racing"})

    assert client.post("/api/prototype", json={"index": "0"}).status_code == 400
    assert client.post("/api/prototype", json={"index": True}).status_code == 400
    assert client.post("/api/prototype", json={"index": 5}).status_code == 400


def test_invalid_key_forces_new_selection(client, fake_service, host):
    fake_service.generate_market_analysis.side_effect = ApiServiceError(
        ApiErrorType.INVALID_KEY, "API Key is invalid or not found."
    )
    client.post("/api/start", json={})

    body = client.post("/api/analyze", json={"genre": "Racing"}).get_json()

    assert body["stage"] == "ANALYSIS_INPUT"
    assert body["api_key_selected"] is False
    # the host still reports a key, but the session is not re-checked automatically
    assert client.get("/api/state").get_json()["api_key_selected"] is False
    assert client.post("/api/start", json={}).status_code == 403


def test_key_toggle_route(client, fake_service):
    fake_service.generate_prototype.return_value = PrototypeResult.html("<canvas></canvas>")
    client.post("/api/start", json={})
    client.post("/api/analyze", json={"genre": "Platformer"})
    client.post("/api/prototype", json={"index": 1})

    body = client.post("/api/keys", json={"key": "ArrowUp", "pressed": True}).get_json()
    assert body["active_keys"] == ["ArrowUp"]

    body = client.post("/api/keys", json={"key": "ArrowUp", "pressed": False}).get_json()
    assert body["active_keys"] == []


def test_reset_gives_a_fresh_session(client):
    client.post("/api/start", json={})

    body = client.post("/api/reset", json={}).get_json()

    assert body["stage"] == "HERO"
    assert len(app_module._controllers) == 1


def test_sessions_are_isolated(client, fake_service, host):
    client.post("/api/start", json={})

    other = app_module.app.test_client()
    assert other.get("/api/state").get_json()["stage"] == "HERO"
    assert client.get("/api/state").get_json()["stage"] == "ANALYSIS_INPUT"


def test_cookieless_clients_stay_under_the_cap(client, monkeypatch):
    registry = app_module.ControllerRegistry(max_sessions=10, ttl_seconds=3600)
    monkeypatch.setattr(app_module, "_controllers", registry)

    for _ in range(50):
        assert app_module.app.test_client().get("/api/state").status_code == 200

    assert len(registry) == 10


def test_recently_used_session_survives_eviction(client, monkeypatch):
    registry = app_module.ControllerRegistry(max_sessions=3, ttl_seconds=3600)
    monkeypatch.setattr(app_module, "_controllers", registry)
    client.post("/api/start", json={})

    for _ in range(5):
        app_module.app.test_client().get("/api/state")
        assert client.get("/api/state").get_json()["stage"] == "ANALYSIS_INPUT"

    assert len(registry) == 3


def test_idle_sessions_expire(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(app_module.time, "monotonic", lambda: now[0])
    registry = app_module.ControllerRegistry(max_sessions=100, ttl_seconds=60)

    first, created = registry.get_or_create("a", object)
    assert created
    assert registry.get_or_create("a", object) == (first, False)

    now[0] += 30
    registry.get_or_create("b", object)
    now[0] += 45
    registry.get_or_create("c", object)

    assert "a" not in registry
    assert "b" in registry and "c" in registry

    now[0] += 61
    replacement, created = registry.get_or_create("b", object)
    assert created
    assert len(registry) == 1
