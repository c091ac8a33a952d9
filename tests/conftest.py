import json
from pathlib import Path
from typing import Any, Dict

import anyio
import fastapi.testclient as fastapi_testclient
import httpx
import pytest
import starlette.testclient as starlette_testclient
from httpx import ASGITransport

from formrelay.core.config import settings
from formrelay.main import app

# -----------------------------------------------------------------------------
# TestClient compatibility shim (starlette 0.27 + httpx 0.28)
# -----------------------------------------------------------------------------


class CompatTestClient:
    __test__ = False

    def __init__(self, app, base_url: str = "http://testserver", **kwargs):
        self.app = app
        self._transport = ASGITransport(app=app)
        self._client = httpx.AsyncClient(
            transport=self._transport,
            base_url=base_url,
            **kwargs,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        anyio.run(self._client.aclose)

    def __getattr__(self, name):
        return getattr(self._client, name)

    def request(self, method, url, **kwargs):
        async def _do_request():
            return await self._client.request(method, url, **kwargs)

        return anyio.run(_do_request)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url, **kwargs):
        return self.request("PUT", url, **kwargs)

    def patch(self, url, **kwargs):
        return self.request("PATCH", url, **kwargs)

    def delete(self, url, **kwargs):
        return self.request("DELETE", url, **kwargs)


# Patch TestClient to avoid httpx 0.28 incompatibility.
fastapi_testclient.TestClient = CompatTestClient
starlette_testclient.TestClient = CompatTestClient

# -----------------------------------------------------------------------------
# Contact document fixtures
# -----------------------------------------------------------------------------


def make_document(tmp_path: Path, **overrides: Dict[str, Any]) -> Dict[str, Any]:
    """A complete document writing mail and rate buckets under ``tmp_path``."""
    document: Dict[str, Any] = {
        "validation": {"minMessageLength": 10, "requirePhone": False, "blockUrls": False},
        "limits": {"rateLimitPerHour": 5, "rateStorePath": str(tmp_path / "rate")},
        "mail": {
            "mode": "file",
            "filePath": str(tmp_path / "mail"),
            "to": {"team@example.com": "Team"},
            "from": "no-reply@example.com",
            "subject": "New contact form submission",
        },
        "messages": {},
    }
    for section, values in overrides.items():
        if values is None:
            document.pop(section, None)
        elif isinstance(values, dict) and isinstance(document.get(section), dict):
            document[section] = {**document[section], **values}
        else:
            document[section] = values
    return document


@pytest.fixture()
def write_config(tmp_path, monkeypatch):
    """Write a contact document and point CONTACT_CONFIG_PATH at it."""
    path = tmp_path / "mailer.config.json"
    monkeypatch.setattr(settings, "CONTACT_CONFIG_PATH", str(path))

    def _write(**overrides):
        path.write_text(json.dumps(make_document(tmp_path, **overrides)), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def contact_config(write_config):
    return write_config()


# -----------------------------------------------------------------------------
# Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(scope="function")
def client():
    """
    TestClient driving the app through the httpx ASGI transport.
    """
    with fastapi_testclient.TestClient(app) as c:
        yield c
