"""Tests for the retention sweep service."""

import asyncio

import pytest

from conftest import FakeGateway
from sessionhub.maintenance.service import MaintenanceService


@pytest.mark.asyncio
async def test_run_now_uses_retention_days():
    gateway = FakeGateway()
    service = MaintenanceService(gateway, retention_days=7)

    assert await service.run_now() == {"webhook_events": 0, "messages": 0}
    assert gateway.calls_to("cleanup_old_data") == [(7,)]


@pytest.mark.asyncio
async def test_periodic_loop_runs_and_survives_errors():
    gateway = FakeGateway()
    gateway.fail.add("cleanup_old_data")
    service = MaintenanceService(gateway, retention_days=30, interval_s=0.01)

    await service.start()
    await asyncio.sleep(0.1)
    service.stop()

    assert len(gateway.calls_to("cleanup_old_data")) >= 2


@pytest.mark.asyncio
async def test_disabled_service_does_not_start():
    service = MaintenanceService(FakeGateway(), enabled=False)
    await service.start()
    assert service._task is None
