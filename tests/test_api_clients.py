import pytest
import requests

import api_clients
import config
from errors import ExternalLookupError
from models import ACCOUNT_SPECIFIC, GENERAL


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


def _completion(text):
    return {"choices": [{"message": {"content": text}}]}


@pytest.mark.parametrize("question, expected", [
    ("What is my account balance?", ACCOUNT_SPECIFIC),
    ("I want to dispute a charge", ACCOUNT_SPECIFIC),
    ("What are your hours?", GENERAL),
    ("", GENERAL),
])
def test_keyword_classify(question, expected):
    assert api_clients.keyword_classify(question) == expected


def test_openai_classify(monkeypatch):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return FakeResponse(_completion(" Account-Specific "))

    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(api_clients.requests, "post", fake_post)

    assert api_clients.openai_classify("Why was I charged twice?") == ACCOUNT_SPECIFIC
    assert calls[0]["headers"]["Authorization"] == "Bearer sk-test"
    assert calls[0]["json"]["temperature"] == 0
    assert calls[0]["timeout"] == 10


def test_openai_classify_general(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(api_clients.requests, "post",
                        lambda *a, **kw: FakeResponse(_completion("general")))
    assert api_clients.openai_classify("When do you open?") == GENERAL


def test_openai_classify_without_key(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
    with pytest.raises(ExternalLookupError):
        api_clients.openai_classify("anything")


def test_openai_classify_unreachable(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(api_clients.requests, "post", boom)
    with pytest.raises(ExternalLookupError):
        api_clients.openai_classify("anything")


def test_openai_classify_http_error(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(api_clients.requests, "post",
                        lambda *a, **kw: FakeResponse({}, status=500))
    with pytest.raises(ExternalLookupError):
        api_clients.openai_classify("anything")


def test_openai_classify_bad_payload(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(api_clients.requests, "post",
                        lambda *a, **kw: FakeResponse({"choices": []}))
    with pytest.raises(ExternalLookupError):
        api_clients.openai_classify("anything")


def test_get_classifier():
    assert api_clients.get_classifier("keyword") is api_clients.keyword_classify
    assert api_clients.get_classifier("openai") is api_clients.openai_classify
    with pytest.raises(ValueError):
        api_clients.get_classifier("crystal-ball")
