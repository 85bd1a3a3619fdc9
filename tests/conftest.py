import time
from typing import Any, Dict, List, Optional

import pytest


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_data: Any = None,
        text: str = "",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.headers = headers or {}
        self.reason = "OK" if status_code < 400 else "Error"

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeSession:
    """Serves canned responses by URL substring.

    Each route holds a list of responses (or exceptions) consumed in order;
    the last one is repeated once the list runs out.
    """

    def __init__(self, routes: Optional[Dict[str, List[Any]]] = None):
        self.routes = {key: list(value) for key, value in (routes or {}).items()}
        self.calls: List[Dict[str, Any]] = []

    def add(self, fragment: str, *responses: Any) -> None:
        self.routes.setdefault(fragment, []).extend(responses)

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        for fragment, responses in self.routes.items():
            if fragment in url:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse(404, {"code": 404, "message": f"No route for {url}"})

    def calls_to(self, fragment: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if fragment in call["url"]]


def token_response(token: str = "tok-1", expires_in: int = 3600) -> FakeResponse:
    return FakeResponse(200, {"access_token": token, "token_type": "bearer", "expires_in": expires_in})


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleeps(monkeypatch):
    """Record sleeps instead of waiting."""
    recorded: List[float] = []
    monkeypatch.setattr(time, "sleep", lambda seconds: recorded.append(seconds))
    return recorded
