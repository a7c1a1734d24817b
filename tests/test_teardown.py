import asyncio
import os
import signal

import pytest

from models import ProvisionedResource
from teardown import CompositeResult, ReleaseHandle, release_all
from utils import ReleaseFailed


def make_result(gateway, *names):
    resources = []
    handles = []
    for name in names:
        resource_id = gateway.add_container(name)
        resources.append(
            ProvisionedResource(
                resource_id=resource_id,
                name=name,
                host_address="127.0.0.1",
                host_port="32768",
            )
        )
        handles.append(ReleaseHandle(gateway, resource_id, name))
    return CompositeResult(resources, handles)


class TestReleaseAll:
    """Test cases for releasing several handles"""

    def test_skips_missing_members(self, gateway):
        resource_id = gateway.add_container("svc-0")

        release_all([None, ReleaseHandle(gateway, resource_id, "svc-0"), None])

        assert gateway.live() == []

    def test_raises_first_failure_after_trying_all(self, gateway):
        handles = [
            ReleaseHandle(gateway, gateway.add_container(name), name)
            for name in ("svc-0", "svc-1", "svc-2")
        ]
        gateway.fail_remove.update({"svc-0", "svc-1"})

        with pytest.raises(ReleaseFailed) as excinfo:
            release_all(handles)

        assert excinfo.value.container_id == handles[0].resource_id
        assert gateway.live() == ["svc-0", "svc-1"]

    def test_repr(self, gateway):
        handle = ReleaseHandle(gateway, gateway.add_container("svc-0"), "svc-0")

        assert "svc-0 active" in repr(handle)
        handle()
        assert "svc-0 released" in repr(handle)


class TestWaitForSignal:
    """Test cases for blocking until termination"""

    @pytest.mark.asyncio
    async def test_stop_event_releases(self, gateway):
        result = make_result(gateway, "svc-0", "svc-1")
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, stop.set)

        await result.wait_for_signal(stop)

        assert gateway.live() == []

    @pytest.mark.asyncio
    async def test_signal_releases(self, gateway):
        result = make_result(gateway, "svc-0")
        asyncio.get_running_loop().call_later(0.05, os.kill, os.getpid(), signal.SIGUSR1)

        await result.wait_for_signal(signals=(signal.SIGUSR1,))

        assert gateway.live() == []

    @pytest.mark.asyncio
    async def test_cancellation_releases(self, gateway):
        result = make_result(gateway, "svc-0")

        waiter = asyncio.create_task(result.wait_for_signal())
        await asyncio.sleep(0.05)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert gateway.live() == []

    @pytest.mark.asyncio
    async def test_release_afterwards_is_noop(self, gateway):
        result = make_result(gateway, "svc-0")
        stop = asyncio.Event()
        stop.set()

        await result.wait_for_signal(stop)
        result.release()

        assert len(gateway.calls_to("remove_resource")) == 1
