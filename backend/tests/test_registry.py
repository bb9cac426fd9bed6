"""
GovGate — Middleware Registry Tests
===================================

What:  Tests for registration, groups, priority ordering, chain construction
       and the permissive / strict handling of unknown names.
How:   Stages are small recording objects; the chain is executed against a
       hand-built request and an endpoint that logs itself.
"""

import pytest
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from govgate.exceptions import UnknownGroupError, UnknownMiddlewareError
from govgate.middleware.rate_limit import RateLimiter, RateLimitMiddleware
from govgate.middleware.registry import MiddlewareRegistry
from govgate.services.container import Container


def make_request(path="/api/records"):
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": path,
            "query_string": b"",
            "headers": [],
            "scheme": "http",
            "server": ("test", 80),
            "client": ("10.0.0.1", 5000),
        }
    )


class Recorder:
    """Builds stages that append their name to a shared log."""

    def __init__(self):
        self.log = []

    def stage(self, name, stop=False):
        log = self.log

        class Stage:
            async def dispatch(self, request, call_next):
                log.append(name)
                if stop:
                    return PlainTextResponse("stopped by " + name, status_code=403)
                return await call_next(request)

        return Stage

    async def endpoint(self, request):
        self.log.append("endpoint")
        return PlainTextResponse("ok")


class TestRegistration:
    def setup_method(self):
        self.registry = MiddlewareRegistry()

    def test_defaults_are_registered(self):
        assert self.registry.priority("csrf") == 100
        assert self.registry.priority("security_headers") == 90
        assert self.registry.priority("rate_limit") == 80
        assert self.registry.priority("input_sanitizer") == 30
        assert len(self.registry.all()) == 8

    def test_default_groups(self):
        assert self.registry.get_group("web") == ["csrf", "security_headers", "input_sanitizer"]
        assert self.registry.get_group("public") == ["cors", "rate_limit"]
        assert set(self.registry.groups()) == {"api", "web", "admin", "public"}

    def test_register_replaces_factory_and_priority(self):
        recorder = Recorder()
        custom = recorder.stage("custom")
        self.registry.register("csrf", custom, 5)
        assert self.registry.get("csrf") is custom
        assert self.registry.priority("csrf") == 5

    def test_register_without_priority(self):
        self.registry.register("audit", Recorder().stage("audit"), None)
        assert self.registry.has("audit")
        assert self.registry.priority("audit") is None

    def test_unregister(self):
        self.registry.unregister("cors")
        assert self.registry.has("cors") is False
        assert self.registry.get("cors") is None

    def test_empty_registry(self):
        registry = MiddlewareRegistry(defaults=False)
        assert registry.all() == {}
        assert registry.groups() == {}

    def test_clear(self):
        self.registry.clear()
        assert self.registry.stats()["total_middleware"] == 0
        assert self.registry.stats()["total_groups"] == 0

    def test_stats(self):
        stats = self.registry.stats()
        assert stats["total_middleware"] == 8
        assert stats["total_groups"] == 4
        assert stats["middleware_by_priority"]["csrf"] == 100
        assert stats["strict"] is False


class TestPriorityOrdering:
    def setup_method(self):
        self.registry = MiddlewareRegistry(defaults=False)
        recorder = Recorder()
        self.registry.register("low", recorder.stage("low"), 10)
        self.registry.register("high", recorder.stage("high"), 50)
        self.registry.register("mid", recorder.stage("mid"), 30)

    def test_descending_priority(self):
        assert self.registry.sort_by_priority(["low", "high", "mid"]) == ["high", "mid", "low"]

    def test_unprioritized_names_go_last_in_listed_order(self):
        names = ["zeta", "low", "alpha", "high"]
        assert self.registry.sort_by_priority(names) == ["high", "low", "zeta", "alpha"]

    def test_equal_priorities_keep_listed_order(self):
        self.registry.register("also_mid", Recorder().stage("also_mid"), 30)
        assert self.registry.sort_by_priority(["also_mid", "mid"]) == ["also_mid", "mid"]
        assert self.registry.sort_by_priority(["mid", "also_mid"]) == ["mid", "also_mid"]

    def test_ordering_is_deterministic(self):
        names = ["mid", "x", "low", "high", "y"]
        first = self.registry.sort_by_priority(names)
        assert all(self.registry.sort_by_priority(names) == first for _ in range(5))

    def test_priority_change_applies_to_existing_group(self):
        self.registry.create_group("g", ["low", "high"])
        self.registry.register("low", Recorder().stage("low"), 99)
        assert self.registry.sort_by_priority(self.registry.get_group("g")) == ["low", "high"]

    def test_resolve_groups_deduplicates(self):
        self.registry.create_group("a", ["low", "mid"])
        self.registry.create_group("b", ["mid", "high"])
        assert self.registry.resolve_groups("a", "b") == ["low", "mid", "high"]


class TestChainExecution:
    def setup_method(self):
        self.recorder = Recorder()
        self.registry = MiddlewareRegistry(defaults=False)

    @pytest.mark.asyncio
    async def test_runs_in_priority_order_then_endpoint(self):
        for name, priority in (("a", 10), ("b", 50), ("c", 30)):
            self.registry.register(name, self.recorder.stage(name), priority)
        response = await self.registry.execute(["a", "b", "c"], make_request(), self.recorder.endpoint)
        assert response.status_code == 200
        assert self.recorder.log == ["b", "c", "a", "endpoint"]

    @pytest.mark.asyncio
    async def test_short_circuit_stops_later_stages(self):
        self.registry.register("first", self.recorder.stage("first"), 30)
        self.registry.register("middle", self.recorder.stage("middle", stop=True), 20)
        self.registry.register("last", self.recorder.stage("last"), 10)
        response = await self.registry.execute(
            ["first", "middle", "last"], make_request(), self.recorder.endpoint
        )
        assert response.status_code == 403
        assert self.recorder.log == ["first", "middle"]

    @pytest.mark.asyncio
    async def test_execute_group(self):
        self.registry.register("a", self.recorder.stage("a"), 10)
        self.registry.create_group("g", ["a"])
        await self.registry.execute_group("g", make_request(), self.recorder.endpoint)
        assert self.recorder.log == ["a", "endpoint"]

    @pytest.mark.asyncio
    async def test_empty_chain_calls_endpoint(self):
        await self.registry.execute([], make_request(), self.recorder.endpoint)
        assert self.recorder.log == ["endpoint"]

    @pytest.mark.asyncio
    async def test_plain_callable_stage(self):
        async def stamp(request, call_next):
            self.recorder.log.append("stamp")
            return await call_next(request)

        self.registry.register("stamp", lambda: stamp, 10)
        await self.registry.execute(["stamp"], make_request(), self.recorder.endpoint)
        assert self.recorder.log == ["stamp", "endpoint"]


class TestInstanceResolution:
    def test_container_builds_known_classes(self):
        limiter = RateLimiter()
        container = Container()
        container.bind(RateLimitMiddleware, lambda c: RateLimitMiddleware(limiter))
        registry = MiddlewareRegistry(container=container)
        assert registry.resolve("rate_limit").limiter is limiter

    def test_falls_back_to_no_argument_construction(self):
        registry = MiddlewareRegistry(container=Container())
        stage = registry.resolve("rate_limit")
        assert isinstance(stage, RateLimitMiddleware)

    def test_instances_are_reused_until_reregistered(self):
        registry = MiddlewareRegistry()
        first = registry.resolve("rate_limit")
        assert registry.resolve("rate_limit") is first
        registry.register("rate_limit", RateLimitMiddleware, 80)
        assert registry.resolve("rate_limit") is not first

    def test_unknown_name_resolves_to_none(self):
        assert MiddlewareRegistry().resolve("nope") is None


class TestUnknownNames:
    @pytest.mark.asyncio
    async def test_permissive_mode_skips_unknown(self):
        recorder = Recorder()
        registry = MiddlewareRegistry(defaults=False)
        registry.register("known", recorder.stage("known"), 10)
        await registry.execute(["ghost", "known"], make_request(), recorder.endpoint)
        assert recorder.log == ["known", "endpoint"]

    def test_permissive_mode_unknown_group_is_empty(self):
        assert MiddlewareRegistry().get_group("ghost") == []

    def test_strict_mode_raises_for_unknown_stage(self):
        registry = MiddlewareRegistry(defaults=False, strict=True)
        with pytest.raises(UnknownMiddlewareError) as exc:
            registry.build(["ghost"], Recorder().endpoint)
        assert exc.value.name == "ghost"

    def test_strict_mode_raises_for_unknown_group(self):
        registry = MiddlewareRegistry(strict=True)
        with pytest.raises(UnknownGroupError):
            registry.get_group("ghost")

    def test_missing_reports_gaps(self):
        registry = MiddlewareRegistry()
        registry.unregister("cors")
        assert registry.missing() == {"api": ["cors"], "public": ["cors"]}

    def test_validate_permissive_returns_report(self, caplog):
        registry = MiddlewareRegistry()
        registry.unregister("auth")
        report = registry.validate(["api", "ghost"])
        assert report == {"api": ["auth"], "admin": ["auth"]}
        assert "undefined middleware group 'ghost'" in caplog.text

    def test_validate_strict_raises(self):
        registry = MiddlewareRegistry(strict=True)
        registry.unregister("auth")
        with pytest.raises(UnknownMiddlewareError):
            registry.validate()

    def test_validate_strict_passes_for_defaults(self):
        registry = MiddlewareRegistry(strict=True)
        assert registry.validate(["api", "web", "admin", "public"]) == {}
