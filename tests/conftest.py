"""
Global test configuration and fixtures for sqlsessions

Provides a throwaway SQLite database per test, a session store bound to it,
and helpers to build Starlette requests and read cookies back from responses.
"""

import os
import tempfile
from http.cookies import Morsel, SimpleCookie
from typing import Callable, Dict, Optional

import pytest
from starlette.requests import Request
from starlette.responses import Response

from sqlsessions.db.session import create_session_engine
from sqlsessions.store import SessionStore

HASH_KEY = b"test-hash-key-for-testing-only-0123456789"
BLOCK_KEY = b"test-block-key-for-testing-only-98765432"
OLD_HASH_KEY = b"retired-hash-key-for-testing-only-000000"
OLD_BLOCK_KEY = b"retired-block-key-for-testing-only-00000"
SESSION_NAME = "test-sess"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def db_path():
    """Create a temporary SQLite database file for each test function"""
    db_fd, path = tempfile.mkstemp(suffix='.db')
    yield path
    os.close(db_fd)
    os.unlink(path)


@pytest.fixture(scope="function")
def db_engine(db_path):
    """Engine bound to the temporary database"""
    engine = create_session_engine(f"sqlite:///{db_path}")
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def store(db_engine):
    """Session store with an encrypting primary key pair"""
    return SessionStore(db_engine, "sessions", HASH_KEY, BLOCK_KEY)


# ============================================================================
# Request / Response Helpers
# ============================================================================

@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Build a Starlette GET request carrying the given cookies"""
    def _make_request(cookies: Optional[Dict[str, str]] = None, path: str = "/") -> Request:
        headers = []
        if cookies:
            header = "; ".join(f"{name}={value}" for name, value in cookies.items())
            headers.append((b"cookie", header.encode("latin-1")))
        scope = {
            "type": "http",
            "method": "GET",
            "path": path,
            "headers": headers,
            "query_string": b"",
        }
        return Request(scope)
    return _make_request


@pytest.fixture
def response_cookies() -> Callable[[Response], Dict[str, Morsel]]:
    """Parse every Set-Cookie header of a response"""
    def _response_cookies(response: Response) -> Dict[str, Morsel]:
        jar: SimpleCookie = SimpleCookie()
        for header in response.headers.getlist("set-cookie"):
            jar.load(header)
        return dict(jar.items())
    return _response_cookies


@pytest.fixture
def follow_up_request(make_request, response_cookies):
    """Build the next request a browser would send after ``response``"""
    def _follow_up(response: Response) -> Request:
        cookies = {
            name: morsel.value
            for name, morsel in response_cookies(response).items()
            if morsel.value
        }
        return make_request(cookies)
    return _follow_up


# ============================================================================
# Test Markers and Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: fast tests without a database"
    )
    config.addinivalue_line(
        "markers", "integration: tests using a real SQLite database"
    )
    config.addinivalue_line(
        "markers", "security: tamper-evidence and injection tests"
    )
