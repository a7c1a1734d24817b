"""
Container Operations Module

Brings a single container up: image resolution, optional override of a
same-named container, create, start, and port discovery.
"""

import asyncio
from typing import Callable, Optional, Tuple

from models import ProvisionRequest, ProvisionedResource
from request_normalizer import normalize
from runtime_gateway import RuntimeGateway, get_default_gateway
from settings import Settings, get_settings
from teardown import ReleaseHandle
from utils import (
    PROVISION_LATENCY,
    CreationFailed,
    ImageResolutionFailed,
    PortUnavailable,
    ProvisioningError,
    ResourceConflict,
    StartFailed,
    log_container_operation,
    logger,
)

PullSink = Callable[[dict], None]


def log_pull_progress(event: dict):
    """Default pull sink: one debug line per progress event"""
    logger.debug(
        "Image pull progress",
        status=event.get("status"),
        layer=event.get("id"),
        progress=event.get("progress"),
    )


async def _call(error_cls, message: str, func, *args, **kwargs):
    """Run a blocking gateway call in a worker thread, wrapping runtime errors"""
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except ProvisioningError:
        raise
    except Exception as e:
        raise error_cls(f"{message}: {e}") from e


def _strip_name_prefix(name: str) -> str:
    # Docker reports names as "/redis-1"
    return name[1:] if name.startswith("/") else name


def resolve_image(gateway: RuntimeGateway, image: str, pull_sink: PullSink) -> bool:
    """Pull ``image`` unless a local image carries exactly that tag.

    Returns True when a pull happened.
    """
    for summary in gateway.list_images():
        if image in summary.tags:
            return False

    logger.info("Pulling image", image=image)
    for event in gateway.pull_image(image):
        pull_sink(event)
    log_container_operation("pull", None, "success", {"image": image})
    return True


def remove_same_named(gateway: RuntimeGateway, name: str) -> int:
    """Force-remove every container, running or stopped, called ``name``"""
    wanted = _strip_name_prefix(name)
    removed = 0
    for summary in gateway.list_resources(include_stopped=True):
        if any(_strip_name_prefix(existing) == wanted for existing in summary.names):
            gateway.remove_resource(summary.id, force=True)
            log_container_operation("override", summary.id, "success", {"name": wanted})
            removed += 1
    return removed


async def _wait_through_cancellation(future) -> bool:
    """Wait until ``future`` is done, absorbing cancellations of the caller.

    Returns True when a cancellation arrived while waiting; the caller must
    re-raise it.
    """
    cancelled = False
    while not future.done():
        try:
            await asyncio.wait({future})
        except asyncio.CancelledError:
            cancelled = True
    return cancelled


async def _release_in_thread(release: ReleaseHandle):
    """Remove the container and only return once the removal has finished"""
    removal = asyncio.ensure_future(asyncio.to_thread(release.release))
    cancelled = await _wait_through_cancellation(removal)
    removal.result()  # ReleaseFailed takes precedence over the cancellation
    if cancelled:
        raise asyncio.CancelledError()


async def _discard_creation(gateway: RuntimeGateway, creation, name: Optional[str]):
    """Wait out a create call abandoned by cancellation and remove what it made"""
    await _wait_through_cancellation(creation)
    if creation.exception() is not None:
        logger.debug("Abandoned create call failed", name=name, error=str(creation.exception()))
        return
    await _release_in_thread(ReleaseHandle(gateway, creation.result(), name))


async def provision_one(
    request: ProvisionRequest,
    gateway: Optional[RuntimeGateway] = None,
    *,
    settings: Optional[Settings] = None,
    pull_sink: Optional[PullSink] = None,
) -> Tuple[ProvisionedResource, ReleaseHandle]:
    """Bring one container up and return it with its release handle.

    Once the container exists, any later failure or cancellation removes it
    before the error propagates. The caller owns the returned handle.
    """
    settings = settings or get_settings()
    request = normalize(request, default_host_ip=settings.default_host_ip)
    gateway = gateway or get_default_gateway()
    pull_sink = pull_sink or log_pull_progress

    with PROVISION_LATENCY.time():
        await _call(
            ImageResolutionFailed,
            f"Could not resolve image '{request.image}'",
            resolve_image,
            gateway,
            request.image,
            pull_sink,
        )

        if request.override_existing and request.name:
            await _call(
                ResourceConflict,
                f"Could not remove existing container '{request.name}'",
                remove_same_named,
                gateway,
                request.name,
            )

        # Shielded so a container created while we are being cancelled is
        # still found and removed
        creation = asyncio.ensure_future(
            asyncio.to_thread(
                gateway.create_resource,
                image=request.image,
                port_key=request.port_key,
                host_ip=request.host_ip,
                host_port=request.binding_port,
                environment=request.environment,
                name=request.name,
            )
        )
        try:
            resource_id = await asyncio.shield(creation)
        except asyncio.CancelledError:
            await _discard_creation(gateway, creation, request.name)
            raise
        except ProvisioningError:
            raise
        except Exception as e:
            raise CreationFailed(
                f"Could not create container from '{request.image}': {e}"
            ) from e

        release = ReleaseHandle(gateway, resource_id, request.name)
        log_container_operation(
            "create", resource_id, "success", {"image": request.image, "name": request.name}
        )

        try:
            await _call(
                StartFailed,
                f"Could not start container {resource_id[:12]}",
                gateway.start_resource,
                resource_id,
            )
            inspection = await _call(
                StartFailed,
                f"Could not inspect container {resource_id[:12]}",
                gateway.inspect_resource,
                resource_id,
            )
            bindings = inspection.bindings.get(request.port_key) or []
            if not bindings:
                raise PortUnavailable(
                    f"Container {resource_id[:12]} has no host binding for {request.port_key}"
                )
        except BaseException:
            await _release_in_thread(release)
            raise

    binding = bindings[0]
    resource = ProvisionedResource(
        resource_id=resource_id,
        name=request.name,
        host_address=binding.host_ip or request.host_ip,
        host_port=binding.host_port,
    )
    log_container_operation(
        "provision", resource_id, "success", {"uri": resource.connection_uri}
    )
    return resource, release
