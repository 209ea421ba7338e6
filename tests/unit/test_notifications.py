from unittest.mock import AsyncMock

from aiohttp import test_utils, web
import pytest

from labplatform.notifications import (
    LoggingSink,
    NotificationEvent,
    WebhookSink,
    notify_safely,
    sink_from_settings,
)


class TestNotifySafely:
    @pytest.mark.asyncio
    async def test_delivers(self):
        sink = AsyncMock()
        payload = {"request_id": "r"}
        ok = await notify_safely(sink, NotificationEvent.REQUEST_APPROVED, "u1", payload)

        assert ok
        sink.send.assert_awaited_once_with(
            NotificationEvent.REQUEST_APPROVED, "u1", {"request_id": "r"}
        )

    @pytest.mark.asyncio
    async def test_failure_swallowed(self):
        sink = AsyncMock()
        sink.send.side_effect = RuntimeError("webhook down")

        assert not await notify_safely(sink, NotificationEvent.PROVISIONING_FAILED, "u1", {})

    @pytest.mark.asyncio
    async def test_timeout_swallowed(self):
        sink = AsyncMock()
        sink.send.side_effect = TimeoutError()

        assert not await notify_safely(sink, NotificationEvent.RESOURCE_DESTROYED, "u1", {})

    @pytest.mark.asyncio
    async def test_logging_sink(self):
        await LoggingSink().send(NotificationEvent.REQUEST_REJECTED, "u1", {"reason": "no"})


class TestWebhookSink:
    @pytest.mark.asyncio
    async def test_posts_event(self):
        received = []

        async def hook(request):
            received.append(await request.json())
            return web.Response(status=204)

        app = web.Application()
        app.router.add_post("/hook", hook)
        async with test_utils.TestServer(app) as server:
            sink = WebhookSink(str(server.make_url("/hook")), timeout=5)
            await sink.send(
                NotificationEvent.RESOURCE_PROVISIONED, "u1", {"ip_address": "10.0.0.5"}
            )

        assert received[0]["event"] == "resource_provisioned"
        assert received[0]["user_id"] == "u1"
        assert received[0]["payload"] == {"ip_address": "10.0.0.5"}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        async def hook(request):
            return web.Response(status=500, text="nope")

        app = web.Application()
        app.router.add_post("/hook", hook)
        async with test_utils.TestServer(app) as server:
            sink = WebhookSink(str(server.make_url("/hook")))
            with pytest.raises(RuntimeError, match="500"):
                await sink.send(NotificationEvent.REQUEST_APPROVED, "u1", {})
            assert not await notify_safely(sink, NotificationEvent.REQUEST_APPROVED, "u1", {})


def test_sink_from_settings(settings):
    assert isinstance(sink_from_settings(settings), LoggingSink)

    settings.notification_webhook_url = "http://hooks.lab/notify"
    sink = sink_from_settings(settings)
    assert isinstance(sink, WebhookSink)
    assert sink.url == "http://hooks.lab/notify"
