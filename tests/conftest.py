"""Shared fixtures: an in-memory container runtime with fault injection."""

import itertools
import threading
import time

import pytest

from models import ImageSummary, PortBinding, ResourceInspection, ResourceSummary
from settings import Settings
from utils import ResourceConflict

GATE_TIMEOUT = 10


class FakeGateway:
    """Thread-safe stand-in for the Docker runtime.

    Failures are injected by container name (or image for pulls); ``gate``
    makes a call block until the returned event is set.
    """

    def __init__(self, images=None, first_host_port=32768):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._ports = itertools.count(first_host_port)
        self.images = list(images or [])
        self.containers = {}
        self.calls = []
        self.removed = []
        self.fail_pull = set()
        self.fail_create = set()
        self.fail_start = set()
        self.fail_remove = set()
        self.no_bindings = set()
        self.delays = {}
        self._gates = {}

    # Test controls

    def gate(self, method, key):
        event = threading.Event()
        self._gates[(method, key)] = event
        return event

    def open_gates(self):
        for event in self._gates.values():
            event.set()

    def add_container(self, name, image="busybox:latest", running=True):
        with self._lock:
            resource_id = f"existing{next(self._ids):04d}"
            self.containers[resource_id] = {
                "name": name,
                "image": image,
                "running": running,
                "port_key": None,
                "host_ip": "",
                "host_port": "",
            }
        return resource_id

    def live(self):
        with self._lock:
            return sorted(c["name"] or rid for rid, c in self.containers.items())

    def calls_to(self, method):
        return [args for name, args in self.calls if name == method]

    def _record(self, method, *args):
        with self._lock:
            self.calls.append((method, args))

    def _wait(self, method, key):
        event = self._gates.get((method, key))
        if event is not None:
            event.wait(GATE_TIMEOUT)
        delay = self.delays.get((method, key))
        if delay:
            time.sleep(delay)

    def _name_of(self, resource_id):
        with self._lock:
            container = self.containers.get(resource_id)
        return container["name"] if container else None

    # RuntimeGateway

    def list_images(self):
        self._record("list_images")
        with self._lock:
            return [ImageSummary(tags=[tag]) for tag in self.images]

    def pull_image(self, name):
        self._record("pull_image", name)
        self._wait("pull_image", name)
        if name in self.fail_pull:
            raise RuntimeError(f"pull access denied for {name}")
        yield {"status": f"Pulling from {name}", "id": "latest"}
        yield {"status": "Download complete", "id": "abc123"}
        with self._lock:
            self.images.append(name)

    def list_resources(self, include_stopped=True):
        self._record("list_resources", include_stopped)
        with self._lock:
            return [
                ResourceSummary(id=rid, names=[f"/{c['name']}"] if c["name"] else [])
                for rid, c in self.containers.items()
                if include_stopped or c["running"]
            ]

    def create_resource(self, image, port_key, host_ip, host_port, environment, name=None):
        self._record("create_resource", image, port_key, host_ip, host_port, list(environment), name)
        self._wait("create_resource", name)
        if name in self.fail_create:
            raise RuntimeError(f"create rejected for {name}")
        with self._lock:
            if name and any(c["name"] == name for c in self.containers.values()):
                raise ResourceConflict(f"Container name '{name}' is already in use")
            resource_id = f"{next(self._ids):064x}"
            self.containers[resource_id] = {
                "name": name,
                "image": image,
                "running": False,
                "port_key": port_key,
                "host_ip": host_ip,
                "host_port": host_port or str(next(self._ports)),
                "environment": list(environment),
            }
        return resource_id

    def start_resource(self, resource_id):
        name = self._name_of(resource_id)
        self._record("start_resource", resource_id)
        self._wait("start_resource", name)
        if name in self.fail_start:
            raise RuntimeError(f"start rejected for {name}")
        with self._lock:
            if resource_id not in self.containers:
                raise RuntimeError(f"No such container: {resource_id}")
            self.containers[resource_id]["running"] = True

    def inspect_resource(self, resource_id):
        name = self._name_of(resource_id)
        self._record("inspect_resource", resource_id)
        self._wait("inspect_resource", name)
        with self._lock:
            container = self.containers.get(resource_id)
            if container is None:
                raise RuntimeError(f"No such container: {resource_id}")
            if name in self.no_bindings:
                return ResourceInspection(bindings={container["port_key"]: []})
            return ResourceInspection(
                bindings={
                    container["port_key"]: [
                        PortBinding(
                            host_ip=container["host_ip"],
                            host_port=container["host_port"],
                        )
                    ]
                }
            )

    def remove_resource(self, resource_id, force=True):
        name = self._name_of(resource_id)
        self._record("remove_resource", resource_id, force)
        self._wait("remove_resource", name)
        if name in self.fail_remove:
            raise RuntimeError(f"removal of {name} failed")
        with self._lock:
            if self.containers.pop(resource_id, None) is not None:
                self.removed.append(resource_id)


@pytest.fixture
def gateway():
    """Fake runtime with redis already pulled"""
    fake = FakeGateway(images=["redis:latest"])
    yield fake
    fake.open_gates()


@pytest.fixture
def settings():
    return Settings(default_host_ip="127.0.0.1")
