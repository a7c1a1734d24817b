"""
Coordinator Module

Provisions several containers concurrently. Either every request comes up and
a CompositeResult is returned in request order, or the first failure is raised
as AggregateFailure after every container that did come up has been removed.
"""

import asyncio
from typing import List, Optional, Sequence, Tuple

from container_operations import PullSink, provision_one
from models import ProvisionRequest, ProvisionedResource
from runtime_gateway import RuntimeGateway, get_default_gateway
from settings import Settings, get_settings
from teardown import CompositeResult, ReleaseHandle, release_all
from utils import AggregateFailure, ReleaseFailed, logger

Slot = Optional[Tuple[ProvisionedResource, ReleaseHandle]]


async def _cancel_and_settle(tasks):
    """Cancel unfinished tasks and wait until all of them have stopped"""
    for task in tasks:
        if not task.done():
            task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def _release_slots(slots: List[Slot], other_failures):
    """Release every filled slot and escalate workers that failed to clean up"""
    await asyncio.to_thread(
        release_all, [slot[1] if slot is not None else None for slot in slots]
    )
    leaked = [error for _, error in other_failures if isinstance(error, ReleaseFailed)]
    if leaked:
        raise leaked[0]


async def provision_all(
    requests: Sequence[ProvisionRequest],
    gateway: Optional[RuntimeGateway] = None,
    *,
    settings: Optional[Settings] = None,
    pull_sink: Optional[PullSink] = None,
) -> CompositeResult:
    """Provision every request concurrently.

    Args:
        requests: one entry per container; results keep this order
        gateway: runtime to provision against, Docker by default
        settings: defaults for normalization, environment by default
        pull_sink: receives image pull progress events

    Returns:
        CompositeResult: the caller owns it and must release it

    Raises:
        AggregateFailure: the first member failure, raised only after every
            member that was created has been removed
    """
    settings = settings or get_settings()
    gateway = gateway or get_default_gateway()

    slots: List[Slot] = [None] * len(requests)
    failures: List[Tuple[int, BaseException]] = []  # in the order observed

    async def worker(index: int, request: ProvisionRequest):
        try:
            slots[index] = await provision_one(
                request, gateway, settings=settings, pull_sink=pull_sink
            )
        except Exception as e:
            failures.append((index, e))

    tasks = [
        asyncio.create_task(worker(index, request), name=f"provision-{index}")
        for index, request in enumerate(requests)
    ]
    logger.info("Provisioning containers", count=len(tasks))

    pending = set(tasks)
    try:
        while pending and not failures:
            _, pending = await asyncio.wait(
                pending, return_when=asyncio.FIRST_COMPLETED
            )
    except asyncio.CancelledError:
        logger.warning("Provisioning cancelled, releasing containers")
        await _cancel_and_settle(tasks)
        await _release_slots(slots, failures)
        raise

    if failures:
        index, error = failures[0]
        logger.error(
            "Provisioning failed, releasing containers",
            index=index,
            error=str(error),
            error_type=type(error).__name__,
        )
        await _cancel_and_settle(tasks)
        await _release_slots(slots, failures[1:])
        raise AggregateFailure(index, error) from error

    resources = [slot[0] for slot in slots]
    releases = [slot[1] for slot in slots]
    logger.info(
        "Containers provisioned",
        uris=[resource.connection_uri for resource in resources],
    )
    return CompositeResult(resources, releases)
