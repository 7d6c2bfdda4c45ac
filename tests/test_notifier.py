"""Tests for Gotify/ntfy delivery."""

from __future__ import annotations

import json

import httpx

from updatectl.services.notifier import NotificationSink, webhook_actions
from tests.mock_executor import make_settings


def make_sink(handler, **overrides):
    values = {
        "gotify_url": "http://gotify.test/message",
        "updatectl_gotify_key": "gk",
        "ntfy_url": "https://ntfy.test/",
        "updatectl_ntfy_topic": "updates",
        "ntfy_auth": "tk_x",
    }
    values.update(overrides)
    return NotificationSink(make_settings(**values), transport=httpx.MockTransport(handler))


class Recorder:
    def __init__(self, status=200):
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json={})

    def by_host(self, host):
        return [r for r in self.requests if r.url.host == host]


async def test_both_backends():
    rec = Recorder()
    delivered = await make_sink(rec).notify("web - OS update complete", "✅ OS: ✅ Up to date")
    assert delivered == {"gotify": True, "ntfy": True}

    [gotify] = rec.by_host("gotify.test")
    assert gotify.headers["X-Gotify-Key"] == "gk"
    assert json.loads(gotify.content) == {
        "title": "web - OS update complete",
        "message": "✅ OS: ✅ Up to date",
        "priority": 5,
    }

    [ntfy] = rec.by_host("ntfy.test")
    assert ntfy.headers["Authorization"] == "Bearer tk_x"
    body = json.loads(ntfy.content)
    assert body["topic"] == "updates"
    assert body["priority"] == 4
    assert body["markdown"] is True
    assert "actions" not in body


async def test_ntfy_actions_capped():
    rec = Recorder()
    actions = [{"action": "http", "label": str(i), "url": "http://x"} for i in range(6)]
    await make_sink(rec).notify("t", "m", backends=["ntfy"], actions=actions)
    [ntfy] = rec.requests
    assert len(json.loads(ntfy.content)["actions"]) == 4


async def test_http_error_status_does_not_raise():
    delivered = await make_sink(Recorder(status=500)).notify("t", "m")
    assert delivered == {"gotify": False, "ntfy": False}


async def test_transport_error_does_not_raise():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert await make_sink(handler).notify("t", "m") == {"gotify": False, "ntfy": False}


async def test_unconfigured_backends_are_skipped():
    rec = Recorder()
    sink = make_sink(rec, updatectl_gotify_key="", updatectl_ntfy_topic="")
    assert await sink.notify("t", "m") == {}
    assert rec.requests == []


def test_webhook_actions():
    cfg = make_settings(updatectl_webhook_url="https://hooks.example.com/")
    actions = webhook_actions("web", cfg, os_updates=True, docker_updates=True)
    assert [a["label"] for a in actions] == [
        "Update OS (web)", "Update Docker (web)", "Cleanup (web)",
    ]
    url = httpx.URL(actions[0]["url"])
    assert url.path == "/webhook/update/os"
    assert url.params["server"] == "web"
    assert url.params["token"] == cfg.updatectl_webhook_secret
    assert all(a["method"] == "POST" for a in actions)


def test_webhook_actions_need_url():
    assert webhook_actions("web", make_settings(updatectl_webhook_url="")) == []
