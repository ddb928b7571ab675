"""Tests for shipgate.pipeline.pools."""

from __future__ import annotations

import threading

import pytest

from shipgate.pipeline.pools import PoolRegistry, PoolUnavailableError, ResourcePool


class TestResourcePool:
    def test_acquire_and_release(self) -> None:
        pool = ResourcePool("docker", ["docker-1"])
        executor = pool.acquire(timeout=0.1)
        assert executor.name == "docker-1"
        assert pool.available == 0
        pool.release(executor)
        assert pool.available == 1

    def test_exhausted_pool_times_out(self) -> None:
        pool = ResourcePool("docker", ["docker-1"])
        pool.acquire(timeout=0.1)
        with pytest.raises(PoolUnavailableError, match="No executor available"):
            pool.acquire(timeout=0.1)

    def test_empty_pool_fails_immediately(self) -> None:
        with pytest.raises(PoolUnavailableError, match="no executors"):
            ResourcePool("gpu", []).acquire(timeout=5)

    def test_waiter_gets_released_executor(self) -> None:
        pool = ResourcePool("docker", ["docker-1"])
        held = pool.acquire(timeout=0.1)
        timer = threading.Timer(0.2, pool.release, args=(held,))
        timer.start()
        try:
            assert pool.acquire(timeout=5).name == "docker-1"
        finally:
            timer.cancel()

    def test_release_rejects_foreign_executor(self) -> None:
        docker = ResourcePool("docker", ["docker-1"])
        other = ResourcePool("default", ["default-1"])
        with pytest.raises(ValueError):
            docker.release(other.acquire(timeout=0.1))


class TestPoolRegistry:
    """Tests for PoolRegistry."""

    def test_from_sizes(self) -> None:
        registry = PoolRegistry.from_sizes({"default": 2, "docker": 1})
        assert registry.labels == ["default", "docker"]
        assert registry.get("default").size == 2

    def test_unknown_label(self) -> None:
        registry = PoolRegistry.from_sizes({"default": 1})
        with pytest.raises(PoolUnavailableError, match="No resource pool labelled 'gpu'"):
            registry.get("gpu")

    def test_lease_releases_on_error(self) -> None:
        registry = PoolRegistry.from_sizes({"docker": 1})
        with pytest.raises(RuntimeError):
            with registry.lease("docker", timeout=0.1):
                assert registry.get("docker").available == 0
                raise RuntimeError("stage blew up")
        assert registry.get("docker").available == 1
