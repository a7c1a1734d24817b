"""
Teardown Module

Release handles for provisioned containers and the composite result handed
back to callers. Handles are idempotent and thread-safe: a container is removed
at most once however many times, or from however many threads, release is
invoked.
"""

import asyncio
import signal
import threading
from typing import Iterable, List, Optional, Sequence

from models import ProvisionedResource
from runtime_gateway import RuntimeGateway
from utils import (
    ACTIVE_CONTAINERS,
    ReleaseFailed,
    log_container_operation,
    logger,
)

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ReleaseHandle:
    """Removes exactly one container, once"""

    def __init__(
        self, gateway: RuntimeGateway, resource_id: str, name: Optional[str] = None
    ):
        self.gateway = gateway
        self.resource_id = resource_id
        self.name = name
        self._released = False
        self._lock = threading.Lock()
        ACTIVE_CONTAINERS.inc()

    @property
    def released(self) -> bool:
        return self._released

    def release(self):
        """Force-remove the container; later calls are no-ops.

        Raises:
            ReleaseFailed: the runtime refused the removal. The handle stays
                active so the release can be attempted again.
        """
        with self._lock:
            if self._released:
                return
            try:
                self.gateway.remove_resource(self.resource_id, force=True)
            except Exception as e:
                log_container_operation(
                    "remove", self.resource_id, "error", {"error": str(e)}
                )
                raise ReleaseFailed(
                    f"Could not remove container {self.name or self.resource_id}: {e}",
                    container_id=self.resource_id,
                ) from e
            self._released = True
        ACTIVE_CONTAINERS.dec()
        log_container_operation("remove", self.resource_id, "success", {"name": self.name})

    __call__ = release

    def __repr__(self):
        state = "released" if self._released else "active"
        return f"<ReleaseHandle {self.name or self.resource_id[:12]} {state}>"


def release_all(handles: Iterable[Optional[ReleaseHandle]]):
    """Release every present handle, then raise the first failure if any"""
    failures = []
    for handle in handles:
        if handle is None:
            continue
        try:
            handle.release()
        except ReleaseFailed as e:
            failures.append(e)

    if failures:
        logger.error(
            "Containers left running after release",
            container_ids=[failure.container_id for failure in failures],
        )
        raise failures[0]


class CompositeResult:
    """Containers from one provision_all call, in request order"""

    def __init__(
        self,
        resources: Sequence[ProvisionedResource],
        releases: Sequence[Optional[ReleaseHandle]],
    ):
        self.resources: List[ProvisionedResource] = list(resources)
        self._releases: List[Optional[ReleaseHandle]] = list(releases)

    def __len__(self):
        return len(self.resources)

    def __iter__(self):
        return iter(self.resources)

    def __getitem__(self, index):
        return self.resources[index]

    def release(self):
        """Release every container; safe to call repeatedly"""
        release_all(self._releases)

    async def wait_for_signal(
        self,
        stop: Optional[asyncio.Event] = None,
        signals: Sequence[int] = TERMINATION_SIGNALS,
    ):
        """Block until a termination signal arrives, then release everything.

        Also returns when ``stop`` is set, and releases before propagating if
        the waiting task is cancelled.
        """
        loop = asyncio.get_running_loop()
        stop = stop or asyncio.Event()

        installed = []
        for sig in signals:
            try:
                loop.add_signal_handler(sig, stop.set)
                installed.append(sig)
            except (NotImplementedError, RuntimeError) as e:
                # Only the main thread of a Unix process can install handlers
                logger.warning("Could not install signal handler", signal=int(sig), error=str(e))

        logger.info("Waiting for termination signal", containers=len(self.resources))
        try:
            await stop.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            logger.info("Releasing containers", containers=len(self.resources))
            await asyncio.to_thread(self.release)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await asyncio.to_thread(self.release)
