import pytest
from starlette.requests import Request

from portal.apps.admin_api.security import get_client_ip, limiter
from portal.core.settings import get_settings


def _request(headers: dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/news/analytics",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("10.0.0.5", 51234),
    }
    return Request(scope)


@pytest.fixture
def proxy_settings(monkeypatch):
    get_settings.cache_clear()
    monkeypatch.setenv("TRUST_PROXY_HEADERS", "true")
    yield
    get_settings.cache_clear()


def test_direct_connection_ignores_forwarded_header():
    request = _request({"X-Forwarded-For": "41.82.1.1"})

    assert get_client_ip(request) == "10.0.0.5"


def test_forwarded_header_used_behind_proxy(proxy_settings):
    request = _request({"X-Forwarded-For": "41.82.1.1, 172.16.0.2"})

    assert get_client_ip(request) == "41.82.1.1"


def test_limiter_disabled_under_test_environment():
    assert limiter.enabled is False
