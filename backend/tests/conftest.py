"""Fixtures compartidas para las pruebas."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from cerebro.core.config import InstanceConfig, Settings
from cerebro.main import create_app
from cerebro.models.instance import Instance
from cerebro.services.checkpoints import CheckpointEngine
from cerebro.services.instances import InstancePool
from cerebro.services.notifier import WorkflowNotifier


class FakeClock:
    """Reloj controlable para fechas límite y retención."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeTimer:
    def __init__(self, delay: float, callback, args) -> None:
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self):
        if self.cancelled:
            return None
        self.fired = True
        return self.callback(*self.args)


class FakeScheduler:
    """Registra los timers en lugar de agendarlos en el event loop."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def schedule(self, delay: float, callback, *args) -> FakeTimer:
        timer = FakeTimer(delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def armed(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled and not timer.fired]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 17, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def events() -> list[tuple[str, dict]]:
    return []


@pytest.fixture
def pool(clock: FakeClock) -> InstancePool:
    return InstancePool(
        [Instance("G01", "key-g01"), Instance("G02", "key-g02"), Instance("G03", "key-g03")],
        clock=clock,
    )


@pytest.fixture
def engine(pool, scheduler, clock, events) -> CheckpointEngine:
    return CheckpointEngine(
        pool,
        scheduler=scheduler,
        emit=lambda kind, payload: events.append((kind, payload)),
        clock=clock,
    )


@pytest.fixture
def notifier_calls() -> list[dict]:
    return []


@pytest.fixture
def notifier(notifier_calls: list[dict]) -> WorkflowNotifier:
    def handler(request: httpx.Request) -> httpx.Response:
        notifier_calls.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    return WorkflowNotifier("https://n8n.test/webhook/multi-checkpoint", transport=httpx.MockTransport(handler))


@pytest.fixture
def app_settings() -> Settings:
    return Settings(
        environment="test",
        sweeper_enabled=False,
        log_file_path=None,
        instances=[
            InstanceConfig(name="G01", id="key-g01"),
            InstanceConfig(name="G02", id="key-g02"),
        ],
    )


@pytest.fixture
def app(app_settings: Settings, notifier: WorkflowNotifier):
    return create_app(app_settings, notifier=notifier)


@pytest.fixture(name="async_client")
async def fixture_async_client(app, notifier: WorkflowNotifier) -> AsyncClient:
    """Retorna un cliente asíncrono contra la app utilizando ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await notifier.drain()
