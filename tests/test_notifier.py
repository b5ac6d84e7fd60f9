# tests/test_notifier.py

from __future__ import annotations

import json

import httpx
import pytest

from taskworker.reporter.notifier import SlackNotifier, format_overdue_notice

from .fakes import make_task


def mock_client(status_code: int, seen: list[httpx.Request]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, text="ok")

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_slack_notifier_posts_overdue_notice() -> None:
    seen: list[httpx.Request] = []
    task = make_task(1)

    async with mock_client(200, seen) as client:
        await SlackNotifier("https://hooks.example/T1", client=client).notify(task)

    assert len(seen) == 1
    assert str(seen[0].url) == "https://hooks.example/T1"
    body = json.loads(seen[0].content)
    assert body == {"text": format_overdue_notice(task)}
    assert task.title in body["text"]


@pytest.mark.asyncio
async def test_slack_notifier_raises_on_http_error() -> None:
    async with mock_client(500, []) as client:
        notifier = SlackNotifier("https://hooks.example/T1", client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await notifier.notify(make_task(1))


def test_slack_notifier_requires_webhook(monkeypatch) -> None:
    monkeypatch.setattr("taskworker.reporter.notifier.settings.slack_webhook_url", None)

    with pytest.raises(ValueError):
        SlackNotifier()
