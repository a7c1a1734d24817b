"""
Runtime Gateway Module

Capability interface to the container runtime, plus the Docker implementation.
Everything above this module talks to a RuntimeGateway and never to the Docker
SDK directly, so tests can swap in an in-memory runtime.
"""

import threading
from functools import lru_cache, wraps
from typing import Iterator, List, Optional, Protocol

import docker
import requests
from docker.errors import APIError, DockerException, NotFound

from models import ImageSummary, PortBinding, ResourceInspection, ResourceSummary
from settings import Settings, get_settings
from utils import ResourceConflict, RuntimeUnavailable, logger


class RuntimeGateway(Protocol):
    """Operations the provisioner needs from a container runtime.

    Calls are blocking and may be issued concurrently from worker threads.
    """

    def list_images(self) -> List[ImageSummary]: ...

    def pull_image(self, name: str) -> Iterator[dict]: ...

    def list_resources(self, include_stopped: bool = True) -> List[ResourceSummary]: ...

    def create_resource(
        self,
        image: str,
        port_key: str,
        host_ip: str,
        host_port: str,
        environment: List[str],
        name: Optional[str] = None,
    ) -> str: ...

    def start_resource(self, resource_id: str) -> None: ...

    def inspect_resource(self, resource_id: str) -> ResourceInspection: ...

    def remove_resource(self, resource_id: str, force: bool = True) -> None: ...


def _translate_errors(func):
    """Decorator turning transport failures into RuntimeUnavailable"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise RuntimeUnavailable(f"Cannot reach container runtime: {e}") from e

    return wrapper


class DockerGateway:
    """RuntimeGateway backed by the Docker Engine API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: int = 60,
        client: Optional[docker.DockerClient] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._client = client
        self._client_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DockerGateway":
        return cls(base_url=settings.docker_base_url, timeout=settings.docker_timeout)

    @property
    def api(self):
        """Low-level API client, connecting on first use"""
        with self._client_lock:
            if self._client is None:
                try:
                    if self.base_url:
                        self._client = docker.DockerClient(
                            base_url=self.base_url, timeout=self.timeout
                        )
                    else:
                        self._client = docker.from_env(timeout=self.timeout)
                except DockerException as e:
                    logger.warning("Docker is not available", error=str(e))
                    raise RuntimeUnavailable(f"Docker is not available: {e}") from e
            return self._client.api

    @_translate_errors
    def list_images(self) -> List[ImageSummary]:
        return [ImageSummary(tags=image.get("RepoTags") or []) for image in self.api.images()]

    def pull_image(self, name: str) -> Iterator[dict]:
        # Generator: errors surface while iterating, so translate them here
        try:
            for event in self.api.pull(name, stream=True, decode=True):
                if "error" in event:
                    # The daemon reports some pull failures in-band with HTTP 200
                    raise APIError(event["error"])
                yield event
        except requests.exceptions.ConnectionError as e:
            raise RuntimeUnavailable(f"Cannot reach container runtime: {e}") from e

    @_translate_errors
    def list_resources(self, include_stopped: bool = True) -> List[ResourceSummary]:
        return [
            ResourceSummary(id=container["Id"], names=container.get("Names") or [])
            for container in self.api.containers(all=include_stopped)
        ]

    @_translate_errors
    def create_resource(
        self,
        image: str,
        port_key: str,
        host_ip: str,
        host_port: str,
        environment: List[str],
        name: Optional[str] = None,
    ) -> str:
        port, protocol = port_key.split("/", 1)
        host_config = self.api.create_host_config(
            port_bindings={port_key: (host_ip, host_port)}
        )
        try:
            response = self.api.create_container(
                image=image,
                ports=[(port, protocol)],
                environment=list(environment),
                name=name or None,
                host_config=host_config,
            )
        except APIError as e:
            if e.status_code == 409:
                raise ResourceConflict(
                    f"Container name '{name}' is already in use"
                ) from e
            raise
        return response["Id"]

    @_translate_errors
    def start_resource(self, resource_id: str) -> None:
        self.api.start(resource_id)

    @_translate_errors
    def inspect_resource(self, resource_id: str) -> ResourceInspection:
        attrs = self.api.inspect_container(resource_id)
        ports = (attrs.get("NetworkSettings") or {}).get("Ports") or {}
        return ResourceInspection(
            bindings={
                port_key: [
                    PortBinding(
                        host_ip=binding.get("HostIp", ""),
                        host_port=binding.get("HostPort", ""),
                    )
                    for binding in host_bindings or []
                ]
                for port_key, host_bindings in ports.items()
            }
        )

    @_translate_errors
    def remove_resource(self, resource_id: str, force: bool = True) -> None:
        try:
            self.api.remove_container(resource_id, force=force)
        except NotFound:
            logger.info("Container already removed", container_id=resource_id)


@lru_cache(maxsize=1)
def get_default_gateway() -> DockerGateway:
    """Shared Docker gateway built from environment settings"""
    return DockerGateway.from_settings(get_settings())
