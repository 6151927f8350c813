"""Unit tests for the autoscaler entry script."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

import autoscaler
from src.control import ClientSecretCredential, StaticTokenCredential
from src.scaling.controller import ScalingController
from src.scaling.exceptions import ConfigurationError, PermissionCheckError
from src.scaling.settings import ConnectionSettings
from src.sqlstore import SqlMonitorSink


def make_settings(**overrides):
    values = {
        "subscription_id": "sub-1",
        "resource_group": "rg-1",
        "access_token": "token",
        "master_database_url": "sqlite+aiosqlite:///master.db",
        "pool_database_url": "sqlite+aiosqlite:///{database}.db",
    }
    values.update(overrides)
    return ConnectionSettings(**values)


class TestBuildCredential:
    def test_service_principal_preferred(self):
        settings = make_settings(tenant_id="t", client_id="c", client_secret="s")

        assert isinstance(autoscaler.build_credential(settings), ClientSecretCredential)

    def test_static_token(self):
        assert isinstance(autoscaler.build_credential(make_settings()), StaticTokenCredential)

    def test_no_credentials(self):
        with pytest.raises(ConfigurationError):
            autoscaler.build_credential(make_settings(access_token=None))


class TestBuildController:
    def test_wires_collaborators(self, config):
        controller = autoscaler.build_controller(config, make_settings())

        assert isinstance(controller, ScalingController)
        assert controller.resource_control.server_name == "sql-test"
        assert controller.metrics.short_window_seconds == config.short_window_seconds
        assert isinstance(controller.monitor, SqlMonitorSink)
        assert controller.monitor.engine is None

    def test_database_urls_required(self, config):
        with pytest.raises(ConfigurationError, match="MASTER_DATABASE_URL"):
            autoscaler.build_controller(config, make_settings(master_database_url=""))


def make_controller(config, **run_cycle):
    controller = MagicMock(config=config, last_evaluations=[])
    controller.run_cycle = AsyncMock(**run_cycle)
    controller.errors.connect = AsyncMock(return_value=False)
    controller.close = AsyncMock()
    return controller


class TestRun:
    @pytest.mark.asyncio
    async def test_single_cycle(self, config):
        controller = make_controller(config, return_value=False)

        await autoscaler.run(controller, once=True)

        controller.run_cycle.assert_awaited_once()
        controller.errors.connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aborted_cycle_does_not_stop_loop(self, config, caplog):
        controller = make_controller(config, side_effect=PermissionCheckError())

        await autoscaler.run(controller, once=True)

        assert "Cycle aborted" in caplog.text

    @pytest.mark.asyncio
    async def test_collaborators_closed_on_exit(self, config):
        controller = make_controller(config, return_value=True)

        await autoscaler.run(controller, once=True)

        controller.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_collaborators_closed_when_cancelled(self, config):
        controller = make_controller(config, side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await autoscaler.run(controller)

        controller.close.assert_awaited_once()
