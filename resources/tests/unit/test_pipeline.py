"""
Unit tests for the hook invocation pipeline.
"""

import asyncio

import pytest

from resources.tests.helpers.extensions import make_package, make_tunnel
from yat.extensions.diagnostics import DiagnosticsLog
from yat.extensions.errors import ExtensionNotFoundError, HookFailureError
from yat.extensions.models import AppActionResult, TunnelAction
from yat.extensions.pipeline import HookPipeline, coerce_action_result
from yat.extensions.registry import ExtensionRegistry, RegisteredApp


def _register(registry, package, enabled=True):
    record = RegisteredApp(package=package, enabled=enabled)
    registry.add(record)
    return record


@pytest.fixture
def registry():
    return ExtensionRegistry()


@pytest.fixture
def pipeline(registry, environment, event_bus):
    return HookPipeline(registry, environment, event_bus, DiagnosticsLog())


class TestCoerceActionResult:
    """Test normalization of primary hook return values."""

    def test_values(self):
        assert coerce_action_result(None).success is True
        assert coerce_action_result(False).success is False
        assert coerce_action_result({"success": False, "message": "nope"}).message == "nope"

    def test_invalid(self):
        with pytest.raises(TypeError):
            coerce_action_result(42)
        with pytest.raises(TypeError):
            coerce_action_result({"message": "no success flag"})


class TestCompositeActions:
    """Test before -> primary -> after execution."""

    @pytest.mark.asyncio
    async def test_start_runs_phases_in_order(self, registry, pipeline):
        order = []
        seen = {}

        def on_start(ctx):
            order.append("start")
            return {"success": True, "message": "up", "data": {"url": "https://x"}}

        def on_after_start(ctx, result):
            order.append("after")
            seen["result"] = result

        _register(registry, make_package(hooks={
            "onBeforeStart": lambda ctx: order.append("before"),
            "onStart": on_start,
            "onAfterStart": on_after_start,
        }))

        result = await pipeline.run_composite(TunnelAction.START, make_tunnel())

        assert order == ["before", "start", "after"]
        assert result.message == "up"
        assert seen["result"] is result

    @pytest.mark.asyncio
    async def test_before_failure_aborts(self, registry, pipeline):
        called = []

        def on_before_stop(ctx):
            raise RuntimeError("disk full")

        _register(registry, make_package(hooks={
            "onBeforeStop": on_before_stop,
            "onStop": lambda ctx: called.append("stop"),
            "onAfterStop": lambda ctx, result: called.append("after"),
        }))

        result = await pipeline.run_composite(TunnelAction.STOP, make_tunnel())

        assert result == AppActionResult.failed("disk full")
        assert called == []
        assert registry.get("acme.web").error_count == 1

    @pytest.mark.asyncio
    async def test_primary_failure_becomes_result(self, registry, pipeline):
        async def on_start(ctx):
            raise ValueError("port in use")

        after = []
        _register(registry, make_package(hooks={
            "onStart": on_start,
            "onAfterStart": lambda ctx, result: after.append(result),
        }))

        result = await pipeline.run_composite(TunnelAction.START, make_tunnel())

        assert result.success is False
        assert result.message == "port in use"
        assert after == [result]
        assert after[0] is result

    @pytest.mark.asyncio
    async def test_after_failure_is_isolated(self, registry, pipeline):
        def on_after_start(ctx, result):
            raise RuntimeError("telemetry down")

        _register(registry, make_package(hooks={"onAfterStart": on_after_start}))

        result = await pipeline.run_composite(TunnelAction.START, make_tunnel())

        assert result.success is True
        entries = pipeline.diagnostics.entries("web")
        assert entries[0].source == "after_start"
        assert entries[0].message == "telemetry down"

    @pytest.mark.asyncio
    async def test_unbound_and_disabled_apps_use_default_handling(self, registry, pipeline):
        _register(registry, make_package(hooks={"onStart": lambda ctx: False}), enabled=False)

        assert (await pipeline.run_composite(TunnelAction.START, make_tunnel(app_id=None))).success
        assert (await pipeline.run_composite(TunnelAction.START, make_tunnel(app_id="unknown"))).success
        assert (await pipeline.run_composite(TunnelAction.START, make_tunnel())).success

    @pytest.mark.asyncio
    async def test_restart(self, registry, pipeline):
        _register(registry, make_package(hooks={"onRestart": lambda ctx: {"success": True, "message": "again"}}))

        result = await pipeline.dispatch("restart", make_tunnel())

        assert result.message == "again"

    @pytest.mark.asyncio
    async def test_dispatch_requires_tunnel(self, pipeline):
        with pytest.raises(ValueError):
            await pipeline.dispatch(TunnelAction.START)


class TestSerialization:
    """Test per-tunnel ordering of actions."""

    @pytest.mark.asyncio
    async def test_same_tunnel_actions_do_not_interleave(self, registry, pipeline):
        events = []

        async def on_start(ctx):
            events.append("start:begin")
            await asyncio.sleep(0.01)
            events.append("start:end")

        async def on_stop(ctx):
            events.append("stop:begin")
            events.append("stop:end")

        _register(registry, make_package(hooks={"onStart": on_start, "onStop": on_stop}))
        tunnel = make_tunnel()

        await asyncio.gather(
            pipeline.run_composite(TunnelAction.START, tunnel),
            pipeline.run_composite(TunnelAction.STOP, tunnel),
        )

        assert events == ["start:begin", "start:end", "stop:begin", "stop:end"]
        assert not pipeline.is_busy(tunnel.id)

    @pytest.mark.asyncio
    async def test_different_tunnels_run_concurrently(self, registry, pipeline):
        events = []

        async def on_start(ctx):
            events.append(f"{ctx.tunnel.id}:begin")
            await asyncio.sleep(0.01)
            events.append(f"{ctx.tunnel.id}:end")

        _register(registry, make_package(hooks={"onStart": on_start}))

        await asyncio.gather(
            pipeline.run_composite(TunnelAction.START, make_tunnel("t1")),
            pipeline.run_composite(TunnelAction.START, make_tunnel("t2")),
        )

        assert events[:2] == ["t1:begin", "t2:begin"]


class TestBeforeDelete:
    """Test the deletion gate."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("verdict, allowed", [(True, True), (None, True), (False, False)])
    async def test_verdicts(self, registry, pipeline, verdict, allowed):
        _register(registry, make_package(hooks={"onBeforeDelete": lambda ctx: verdict}))

        assert await pipeline.run_before_delete(make_tunnel()) is allowed

    @pytest.mark.asyncio
    async def test_exception_vetoes(self, registry, pipeline):
        def on_before_delete(ctx):
            raise RuntimeError("tunnel has open sessions")

        _register(registry, make_package(hooks={"onBeforeDelete": on_before_delete}))

        assert await pipeline.dispatch(TunnelAction.DELETE, make_tunnel()) is False

    @pytest.mark.asyncio
    async def test_no_hook_allows(self, registry, pipeline):
        _register(registry, make_package())

        assert await pipeline.run_before_delete(make_tunnel()) is True


class TestBroadcasts:
    """Test locale and theme notifications."""

    @pytest.mark.asyncio
    async def test_theme_failure_is_isolated(self, registry, pipeline):
        received = []

        def broken(is_dark, mode, ctx):
            raise RuntimeError("renderer gone")

        _register(registry, make_package("acme.a", app_id="a", hooks={"onThemeChange": broken}))
        _register(registry, make_package(
            "acme.b", app_id="b",
            hooks={"onThemeChange": lambda is_dark, mode, ctx: received.append((is_dark, mode))},
        ))

        delivered = await pipeline.broadcast_theme(True, "dark")

        assert delivered == 1
        assert received == [(True, "dark")]
        assert pipeline.diagnostics.entries("a")[0].source == "theme_change"

    @pytest.mark.asyncio
    async def test_locale_per_bound_tunnel(self, registry, pipeline):
        seen = []

        _register(registry, make_package(
            hooks={"onLocaleChange": lambda locale, ctx: seen.append((locale, ctx.tunnel and ctx.tunnel.id))},
        ))
        _register(registry, make_package("acme.off", app_id="off", hooks={
            "onLocaleChange": lambda locale, ctx: seen.append(("off", None)),
        }), enabled=False)

        await pipeline.dispatch(
            "locale", locale="de-DE",
            tunnels=[make_tunnel("t1"), make_tunnel("t2"), make_tunnel("t3", app_id="other")],
        )

        assert seen == [("de-DE", "t1"), ("de-DE", "t2")]

    @pytest.mark.asyncio
    async def test_app_without_tunnels_notified_once(self, registry, pipeline):
        seen = []
        _register(registry, make_package(hooks={"onLocaleChange": lambda locale, ctx: seen.append(ctx.tunnel)}))

        assert await pipeline.broadcast_locale("fr-FR") == 1
        assert seen == [None]


class TestContextAndCustomHooks:
    """Test hook contexts and host-initiated custom hooks."""

    @pytest.mark.asyncio
    async def test_context_reflects_environment(self, registry, pipeline, environment):
        contexts = []
        _register(registry, make_package(hooks={"onStart": lambda ctx: contexts.append(ctx)}))
        environment.set_locale("de-DE")

        await pipeline.run_composite(TunnelAction.START, make_tunnel())
        await pipeline.run_composite(TunnelAction.START, make_tunnel())

        first, second = contexts
        assert first is not second
        assert first.locale == "de-DE"
        assert first.translate("tab.logs") == "Protokolle"
        assert first.tunnel.id == "t1"

    @pytest.mark.asyncio
    async def test_emit_reaches_event_bus(self, registry, pipeline, event_bus):
        received = []
        event_bus.subscribe("cert.renewed", received.append)
        _register(registry, make_package(hooks={"onStart": lambda ctx: ctx.emit("cert.renewed", "example.com")}))

        await pipeline.run_composite(TunnelAction.START, make_tunnel())
        await event_bus.drain()

        assert received[0].data == ("example.com",)
        assert received[0].source == "web"
        assert received[0].tunnel_id == "t1"

    @pytest.mark.asyncio
    async def test_custom_hooks(self, registry, pipeline):
        def failing(ctx):
            raise RuntimeError("nope")

        record = _register(registry, make_package(hooks={
            "onRefreshCert": lambda domain, ctx: f"renewed {domain}",
            "onBroken": failing,
        }))

        assert await pipeline.invoke_custom(record, "onRefreshCert", "example.com") == "renewed example.com"
        with pytest.raises(HookFailureError):
            await pipeline.invoke_custom(record, "onBroken")
        with pytest.raises(ExtensionNotFoundError):
            await pipeline.invoke_custom(record, "onMissing")
