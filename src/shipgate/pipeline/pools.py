"""Named resource pools that stages must run on.

Each stage declares a pool label. Before running a stage, the runner
leases an executor from that pool and releases it afterwards whatever the
outcome. An unknown label or an exhausted pool is an infrastructure
failure.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

from shipgate.core.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_POOL = "default"
DEFAULT_LEASE_TIMEOUT = 30.0


class PoolUnavailableError(Exception):
    """No executor could be obtained from the requested pool."""

    pass


@dataclass(frozen=True)
class Executor:
    """A slot in a resource pool."""

    pool: str
    name: str


class ResourcePool:
    """Fixed set of executors with bounded-wait acquisition."""

    def __init__(self, label: str, executors: Iterable[str]) -> None:
        self.label = label
        self._all = [Executor(pool=label, name=name) for name in executors]
        self._free: List[Executor] = list(self._all)
        self._condition = threading.Condition()

    @property
    def size(self) -> int:
        return len(self._all)

    @property
    def available(self) -> int:
        with self._condition:
            return len(self._free)

    def acquire(self, timeout: float = DEFAULT_LEASE_TIMEOUT) -> Executor:
        """Take a free executor, waiting at most ``timeout`` seconds.

        Raises:
            PoolUnavailableError: If the pool is empty or stays exhausted.
        """
        if not self._all:
            raise PoolUnavailableError(f"Pool '{self.label}' has no executors")
        with self._condition:
            if not self._condition.wait_for(lambda: bool(self._free), timeout=timeout):
                raise PoolUnavailableError(
                    f"No executor available in pool '{self.label}' after {timeout}s"
                )
            return self._free.pop(0)

    def release(self, executor: Executor) -> None:
        if executor.pool != self.label:
            raise ValueError(f"Executor {executor.name} does not belong to pool '{self.label}'")
        with self._condition:
            if executor in self._free:
                return
            self._free.append(executor)
            self._condition.notify()


class PoolRegistry:
    """Lookup of pools by label."""

    def __init__(self, pools: Optional[Iterable[ResourcePool]] = None) -> None:
        self._pools: Dict[str, ResourcePool] = {}
        for pool in pools or []:
            self.add(pool)

    @classmethod
    def from_sizes(cls, sizes: Mapping[str, int]) -> "PoolRegistry":
        """Build pools with generated executor names, e.g. ``docker-1``."""
        return cls(
            ResourcePool(label, [f"{label}-{index + 1}" for index in range(size)])
            for label, size in sizes.items()
        )

    def add(self, pool: ResourcePool) -> None:
        self._pools[pool.label] = pool

    def get(self, label: str) -> ResourcePool:
        try:
            return self._pools[label]
        except KeyError:
            raise PoolUnavailableError(
                f"No resource pool labelled '{label}' (known: {', '.join(sorted(self._pools)) or 'none'})"
            ) from None

    @property
    def labels(self) -> List[str]:
        return sorted(self._pools)

    @contextmanager
    def lease(self, label: str, timeout: float = DEFAULT_LEASE_TIMEOUT) -> Iterator[Executor]:
        """Acquire an executor from ``label`` and always release it."""
        pool = self.get(label)
        executor = pool.acquire(timeout)
        LOGGER.debug(f"Leased executor {executor.name} from pool '{label}'")
        try:
            yield executor
        finally:
            pool.release(executor)
            LOGGER.debug(f"Released executor {executor.name} to pool '{label}'")
