import config
from models import ApiErrorType, ApiServiceError


def test_missing_secret_key_warns(monkeypatch, caplog):
    monkeypatch.delenv("FLASK_SECRET_KEY", raising=False)

    with caplog.at_level("WARNING", logger="config"):
        secret = config.load_secret_key()

    assert secret == config.DEV_SECRET_KEY
    assert "FLASK_SECRET_KEY is not set" in caplog.text


def test_configured_secret_key_is_quiet(monkeypatch, caplog):
    monkeypatch.setenv("FLASK_SECRET_KEY", "s3cret")

    with caplog.at_level("WARNING", logger="config"):
        assert config.load_secret_key() == "s3cret"

    assert caplog.text == ""


def test_error_kind_keyword():
    err = ApiServiceError(kind="NETWORK", message="offline")
    assert err.type is ApiErrorType.NETWORK
    assert str(err) == "offline"
