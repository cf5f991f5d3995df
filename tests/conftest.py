import base64

import pytest

from exptracker.sql_store import SqliteStore
from exptracker.store import JsonStore


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    d = tmp_path / "data"
    monkeypatch.setenv("DATA_DIR", str(d))
    for name in ("DATABASE_PATH", "STORAGE_BACKEND", "APP_PASSWORD", "APP_USER"):
        monkeypatch.delenv(name, raising=False)
    return d


@pytest.fixture(params=["json", "sqlite"])
def store(request, data_dir):
    if request.param == "json":
        s = JsonStore(data_dir)
    else:
        s = SqliteStore(data_dir / "tracker.db")
    yield s
    s.close()


@pytest.fixture(params=["json", "sqlite"])
def client(request, monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", request.param)
    from web_app.app import app

    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def basic_auth(user, password):
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}
