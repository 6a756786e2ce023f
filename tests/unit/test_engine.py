"""Unit tests for BareMetalEngine reconcile/delete entry points."""

from unittest.mock import patch

import pytest
import structlog

from helpers import NOW, FakeExecutor, make_server, rate_limit_error
from provisioner.bootstrap import StaticBootstrapDataProvider
from provisioner.engine import BareMetalEngine, ReconcileResult, release_machine
from provisioner.errors import DuplicateClaimError, NoServerAvailableError, ProvisioningError
from provisioner.models import MachineStatus


@pytest.fixture
def engine(provisioning_request, robot, settings):
    return BareMetalEngine(
        provisioning_request,
        robot,
        executor=FakeExecutor(),
        bootstrap=StaticBootstrapDataProvider(b"#!/bin/bash\n"),
        settings=settings,
    )


class TestReconcile:
    @pytest.mark.asyncio
    async def test_attached_server_done(self, engine, robot):
        robot.list_servers.return_value = [make_server("c1--ax41--m1", number=1003)]

        result = await engine.reconcile(now=NOW)

        assert result == ReconcileResult(requeue_after=None)
        assert result.done
        assert engine.status.ready
        assert engine.status.provider_id == "hcloud://1003"

    @pytest.mark.asyncio
    async def test_rate_limit_requeues_after_660(self, engine, robot):
        robot.list_servers.side_effect = rate_limit_error()

        result = await engine.reconcile(now=NOW)

        assert result.requeue_after == 660  # noqa: PLR2004
        assert not result.done

    @pytest.mark.asyncio
    async def test_provisioning_error_is_raised(self, engine, robot):
        robot.list_servers.return_value = []

        with pytest.raises(NoServerAvailableError, match="no bare metal server found of type ax41"):
            await engine.reconcile(now=NOW)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, engine, robot):
        robot.list_servers.side_effect = RuntimeError("connection reset")

        with pytest.raises(ProvisioningError, match="connection reset") as exc_info:
            await engine.reconcile(now=NOW)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "scanning" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_status_is_shared_with_caller(self, provisioning_request, robot, settings):
        status = MachineStatus()
        robot.list_servers.return_value = [make_server("c1--ax41--m1", ip="10.0.0.3")]
        engine = BareMetalEngine(
            provisioning_request,
            robot,
            executor=FakeExecutor(),
            bootstrap=StaticBootstrapDataProvider(b"#!/bin/bash\n"),
            settings=settings,
            status=status,
        )

        await engine.reconcile(now=NOW)

        assert status.server_ip == "10.0.0.3"
        assert status.provisioning_state == "done"

    @pytest.mark.asyncio
    async def test_without_bootstrap_provider(self, provisioning_request, robot, settings):
        engine = BareMetalEngine(
            provisioning_request, robot, executor=FakeExecutor(), settings=settings
        )

        with pytest.raises(ProvisioningError, match="no bootstrap data provider"):
            await engine.reconcile(now=NOW)

    @pytest.mark.asyncio
    async def test_log_context_bound_during_run(self, engine, robot):
        seen = {}

        async def list_servers():
            seen.update(structlog.contextvars.get_contextvars())
            return []

        robot.list_servers.side_effect = list_servers

        with pytest.raises(NoServerAvailableError):
            await engine.reconcile(now=NOW)

        assert seen["cluster"] == "c1"
        assert seen["machine"] == "m1"
        assert seen["step"] == "scanning"
        assert len(seen["correlation_id"]) == 16  # noqa: PLR2004
        assert "cluster" not in structlog.contextvars.get_contextvars()

    def test_default_executor_uses_request_key(self, provisioning_request, robot, settings):
        with patch("provisioner.engine.RemoteExecutor") as executor_cls:
            BareMetalEngine(provisioning_request, robot, settings=settings)

        executor_cls.assert_called_once_with("dummy-private-key", settings=settings)


class TestDelete:
    @pytest.mark.asyncio
    async def test_renames_to_released(self, engine, robot):
        robot.list_servers.return_value = [
            make_server("ax41--pool", ip="10.0.0.1"),
            make_server("c1--ax41--m1", ip="10.0.0.2"),
        ]

        result = await engine.delete(now=NOW)

        assert result == ReconcileResult()
        robot.set_server_name.assert_awaited_once_with("10.0.0.2", "ax41--unused-m1")

    @pytest.mark.asyncio
    async def test_nothing_attached_is_noop(self, engine, robot):
        robot.list_servers.return_value = [make_server("ax41--pool"), make_server("c2--ax41--m1")]

        result = await engine.delete(now=NOW)

        assert result.done
        robot.set_server_name.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_on_listing_requeues_after_120(self, engine, robot):
        robot.list_servers.side_effect = rate_limit_error()

        result = await engine.delete(now=NOW)

        assert result.requeue_after == 120  # noqa: PLR2004

    @pytest.mark.asyncio
    async def test_rate_limit_on_rename_requeues_after_120(self, engine, robot):
        robot.list_servers.return_value = [make_server("c1--ax41--m1")]
        robot.set_server_name.side_effect = rate_limit_error()

        result = await engine.delete(now=NOW)

        assert result.requeue_after == 120  # noqa: PLR2004

    @pytest.mark.asyncio
    async def test_duplicate_claim_raises(self, engine, robot):
        robot.list_servers.return_value = [
            make_server("c1--ax41--m1", ip="10.0.0.1"),
            make_server("c1--ax41--m1", ip="10.0.0.2"),
        ]

        with pytest.raises(DuplicateClaimError):
            await engine.delete(now=NOW)

        robot.set_server_name.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, engine, robot):
        robot.list_servers.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await engine.delete(now=NOW)

    @pytest.mark.asyncio
    async def test_release_machine_without_engine(self, robot, settings):
        robot.list_servers.return_value = [make_server("c1--ax41--m1", ip="10.0.0.2")]

        result = await release_machine(robot, "c1", "ax41", "m1", settings=settings, now=NOW)

        assert result.done
        robot.set_server_name.assert_awaited_once_with("10.0.0.2", "ax41--unused-m1")
