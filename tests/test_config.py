import importlib

from shelf_rec import config


def test_env_overrides_and_validation(monkeypatch):
    monkeypatch.setenv("SHELF_HTTP_TIMEOUT", "4.5")
    monkeypatch.setenv("SHELF_RETRY_DELAY", "-1")  # should clamp to min
    monkeypatch.setenv("SHELF_HTTP_RETRIES", "0")  # min clamp

    cfg = importlib.reload(config)

    assert cfg.HTTP_TIMEOUT == 4.5
    assert cfg.RETRY_INITIAL_DELAY == 0.0
    assert cfg.MAX_HTTP_RETRIES == 1


def test_db_path_and_api_key_respect_env(monkeypatch, tmp_path):
    db_path = tmp_path / "custom.db"
    monkeypatch.setenv("SHELF_DB", str(db_path))
    monkeypatch.setenv("SHELF_GOOGLE_BOOKS_API_KEY", "secret")

    cfg = importlib.reload(config)

    assert cfg.DB_PATH == db_path
    assert cfg.GOOGLE_BOOKS_API_KEY == "secret"


def test_invalid_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("SHELF_HTTP_TIMEOUT", "not-a-float")
    monkeypatch.setenv("SHELF_RETRY_DELAY", "oops")
    monkeypatch.setenv("SHELF_HTTP_RETRIES", "bad-int")
    monkeypatch.delenv("SHELF_GOOGLE_BOOKS_API_KEY", raising=False)

    cfg = importlib.reload(config)

    assert cfg.HTTP_TIMEOUT == 10.0
    assert cfg.RETRY_INITIAL_DELAY == 0.5
    assert cfg.MAX_HTTP_RETRIES == 2
    assert cfg.GOOGLE_BOOKS_API_KEY is None


def test_recommender_constants():
    assert config.MIN_RATING == 3
    assert config.TOP_N == 12
    assert config.MIN_LOCAL_CANDIDATES == 3
    assert config.AUTHOR_BOOST == 1.5
