# tests/roots/test_manager.py
import asyncio

import pytest
import pytest_asyncio

from rootguard.manager import ChangeRateLimiter, RootsManager
from rootguard.metrics import MetricsRecorder, OperationType
from rootguard.models import ConfigSource, RejectionCode, RootsNotification
from rootguard.provider import ConfigurationProvider


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def default_dir(workspace):
    path = workspace / "default"
    path.mkdir()
    return str(path)


@pytest_asyncio.fixture
async def provider(factory, allowed_root, default_dir):
    provider = ConfigurationProvider(
        factory,
        allowed_roots=[str(allowed_root)],
        default_directory=default_dir,
        environ={},
    )
    await provider.initialize()
    return provider


@pytest.fixture
def manager(provider, clock):
    return RootsManager(provider, rate_limiter=ChangeRateLimiter(clock=clock))


@pytest.fixture
def events(provider):
    received = []
    provider.on_configuration_change(received.append)
    return received


class TestHandleRootsChanged:
    @pytest.mark.asyncio
    async def test_bad_root_then_good_root(self, manager, provider, allowed_root, events):
        result = await manager.handle_roots_changed({"roots": ["/bad", str(allowed_root)]})

        assert result.valid
        assert result.normalized_path == str(allowed_root)
        assert [d.valid for d in result.details] == [False, True]
        assert result.details[0].directory == "/bad"
        assert result.details[0].code is RejectionCode.NOT_WHITELISTED
        assert [d.directory for d in result.rejected_details] == ["/bad"]
        assert len(events) == 1
        assert provider.get_current_qr_directory() == str(allowed_root)
        assert provider.get_configuration_source() is ConfigSource.ROOTS

    @pytest.mark.asyncio
    async def test_first_valid_root_wins(self, manager, provider, allowed_root):
        first, second = str(allowed_root / "first"), str(allowed_root / "second")
        result = await manager.handle_roots_changed({"roots": [first, second]})
        assert result.normalized_path == first
        assert provider.get_current_qr_directory() == first

    @pytest.mark.asyncio
    async def test_no_valid_root(self, manager, provider, default_dir, events):
        result = await manager.handle_roots_changed({"roots": ["/bad", "/worse"]})

        assert not result.valid
        assert result.code is RejectionCode.NO_VALID_ROOT
        assert len(result.details) == 2
        assert events == []
        assert provider.get_current_qr_directory() == default_dir

    @pytest.mark.asyncio
    async def test_notification_object(self, manager, allowed_root):
        notification = RootsNotification(roots=(f"file://{allowed_root}/uri",), source="test")
        result = await manager.handle_roots_changed(notification)
        assert result.valid
        assert result.normalized_path == str(allowed_root / "uri")

    @pytest.mark.asyncio
    async def test_invalid_entry_is_reported_not_raised(self, manager, allowed_root):
        result = await manager.handle_roots_changed({"roots": [None, "", str(allowed_root)]})
        assert result.valid
        assert [d.code for d in result.rejected_details] == [
            RejectionCode.INVALID_INPUT,
            RejectionCode.INVALID_INPUT,
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [{}, {"roots": None}, {"roots": "/work/qrimages"}, {"roots": []}, {"roots": 5}],
    )
    async def test_malformed_notification(self, manager, events, payload):
        result = await manager.handle_roots_changed(payload)
        assert not result.valid
        assert result.code is RejectionCode.INVALID_INPUT
        assert result.details == ()
        assert events == []

    @pytest.mark.asyncio
    async def test_provider_refusal(self, factory, provider, workspace, clock):
        other = workspace / "other"
        validator = factory.create("standard", {"allowed_roots": [str(other)]})
        manager = RootsManager(provider, validator=validator, rate_limiter=ChangeRateLimiter(clock))

        result = await manager.handle_roots_changed({"roots": [str(other / "x")]})

        assert not result.valid
        assert result.code is RejectionCode.UPDATE_REJECTED
        assert result.details[0].valid

    @pytest.mark.asyncio
    async def test_parallel_validation_keeps_declaration_order(self, manager, allowed_root):
        roots = [str(allowed_root / f"r{i}") for i in range(5)] + ["/bad"]
        result = await manager.handle_roots_changed({"roots": roots})
        assert [d.directory for d in result.details] == roots


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_second_change_inside_interval_is_rejected(
        self, manager, allowed_root, clock, events
    ):
        first = await manager.handle_roots_changed({"roots": [str(allowed_root / "a")]})
        clock.now += 0.1
        second = await manager.handle_roots_changed({"roots": [str(allowed_root / "b")]})

        assert first.valid
        assert not second.valid
        assert second.code is RejectionCode.RATE_LIMITED
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_change_after_interval_is_accepted(self, manager, provider, allowed_root, clock):
        await manager.handle_roots_changed({"roots": [str(allowed_root / "a")]})
        clock.now += 1.0 / manager.validator.rate_limit
        result = await manager.handle_roots_changed({"roots": [str(allowed_root / "b")]})
        assert result.valid
        assert provider.get_current_qr_directory() == str(allowed_root / "b")

    @pytest.mark.asyncio
    async def test_malformed_notification_does_not_consume_budget(
        self, manager, allowed_root
    ):
        await manager.handle_roots_changed({"roots": []})
        result = await manager.handle_roots_changed({"roots": [str(allowed_root)]})
        assert result.valid

    @pytest.mark.asyncio
    async def test_concurrent_notifications(self, manager, allowed_root):
        results = await asyncio.gather(
            manager.handle_roots_changed({"roots": [str(allowed_root / "a")]}),
            manager.handle_roots_changed({"roots": [str(allowed_root / "b")]}),
        )
        assert sorted(r.code is RejectionCode.RATE_LIMITED for r in results) == [False, True]

    @pytest.mark.asyncio
    async def test_clear_resets_limiter(self, manager, provider, allowed_root, default_dir):
        await manager.handle_roots_changed({"roots": [str(allowed_root)]})
        await manager.clear_roots_configuration()

        assert provider.get_current_qr_directory() == default_dir
        assert provider.get_configuration_source() is ConfigSource.DEFAULT
        result = await manager.handle_roots_changed({"roots": [str(allowed_root)]})
        assert result.valid


class TestChangeRateLimiter:
    def test_interval_follows_rate(self, clock):
        limiter = ChangeRateLimiter(clock)
        assert limiter.try_acquire(2.0)
        clock.now += 0.25
        assert not limiter.try_acquire(2.0)
        clock.now += 0.25
        assert limiter.try_acquire(2.0)

    def test_rejected_attempt_does_not_restart_interval(self, clock):
        limiter = ChangeRateLimiter(clock)
        limiter.try_acquire(1.0)
        clock.now += 0.5
        assert not limiter.try_acquire(1.0)
        clock.now += 0.5
        assert limiter.try_acquire(1.0)

    def test_reset(self, clock):
        limiter = ChangeRateLimiter(clock)
        limiter.try_acquire(0.1)
        limiter.reset()
        assert limiter.try_acquire(0.1)


class TestDirectoryOperations:
    @pytest.mark.asyncio
    async def test_validate_directory_does_not_change_configuration(
        self, manager, provider, allowed_root, events
    ):
        result = await manager.validate_directory(str(allowed_root / "x"))
        assert result.valid
        assert events == []
        assert provider.get_configuration_source() is ConfigSource.DEFAULT

    @pytest.mark.asyncio
    async def test_get_current_roots(self, manager, default_dir):
        status = manager.get_current_roots()
        assert status.current_directory == default_dir
        assert status.source is ConfigSource.DEFAULT

    @pytest.mark.asyncio
    async def test_ensure_creates_directory(self, manager, allowed_root):
        target = allowed_root / "new" / "nested"
        assert await manager.ensure_directory_with_security_check(str(target))
        assert target.is_dir()
        assert await manager.ensure_directory_with_security_check(str(target))

    @pytest.mark.asyncio
    async def test_ensure_refuses_outside_whitelist(self, manager, workspace):
        target = workspace / "outside"
        assert not await manager.ensure_directory_with_security_check(str(target))
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_ensure_reports_creation_failure(self, manager, allowed_root, monkeypatch):
        def fail(directory):
            raise PermissionError(13, "Permission denied", directory)

        monkeypatch.setattr("rootguard.manager._make_directory", fail)
        assert not await manager.ensure_directory_with_security_check(str(allowed_root / "x"))

    @pytest.mark.asyncio
    async def test_directory_info_for_current_directory(self, manager, allowed_root):
        await manager.handle_roots_changed({"roots": [str(allowed_root)]})
        info = await manager.get_roots_directory_info(str(allowed_root))
        assert info.source is ConfigSource.ROOTS
        assert info.exists
        assert info.within_whitelist

    @pytest.mark.asyncio
    async def test_directory_info_for_other_directory(self, manager, allowed_root):
        info = await manager.get_roots_directory_info(str(allowed_root / "missing"))
        assert info.source is None
        assert not info.exists
        assert info.within_whitelist


class TestPerformanceMetrics:
    @pytest.mark.asyncio
    async def test_roots_change_is_timed(self, manager, allowed_root):
        result = await manager.handle_roots_changed({"roots": ["/bad", str(allowed_root)]})
        assert result.processing_time_ms >= 0

        [metric] = manager.get_performance_metrics()
        assert metric.operation is OperationType.ROOTS_CHANGED
        assert metric.success
        assert metric.metadata == {"roots": 2, "code": None}

    @pytest.mark.asyncio
    async def test_rejected_change_is_recorded_as_failure(self, manager):
        await manager.handle_roots_changed({"roots": []})
        [metric] = manager.get_performance_metrics()
        assert not metric.success
        assert metric.metadata["code"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_newest_first_with_limit(self, manager, allowed_root, workspace):
        await manager.validate_directory(str(allowed_root))
        await manager.validate_directory(str(workspace / "elsewhere"))
        await manager.ensure_directory_with_security_check(str(allowed_root / "made"))

        recent = manager.get_performance_metrics(limit=2)
        assert [m.operation for m in recent] == [
            OperationType.DIRECTORY_VALIDATION,
            OperationType.DIRECTORY_VALIDATION,
        ]
        assert recent[0].metadata["create"] is True
        assert recent[1].success is False
        assert len(manager.get_performance_metrics(limit=10)) == 3
        assert manager.get_performance_metrics(limit=0) == []

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, provider, clock, allowed_root):
        manager = RootsManager(
            provider,
            rate_limiter=ChangeRateLimiter(clock=clock),
            metrics=MetricsRecorder(max_entries=3),
        )
        for name in ("a", "b", "c", "d"):
            await manager.validate_directory(str(allowed_root / name))
        recent = manager.get_performance_metrics(limit=10)
        assert [m.metadata["directory"] for m in recent] == [
            str(allowed_root / "d"),
            str(allowed_root / "c"),
            str(allowed_root / "b"),
        ]
