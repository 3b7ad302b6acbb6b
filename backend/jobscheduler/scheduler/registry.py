"""
In-memory job registry and running-set used by the scheduler service.
"""

import threading
from typing import Dict, List, Optional, Set

from .errors import ConfigurationError
from .types import JobDescriptor, JobHandler


class JobRegistry:
    """
    Table of registered jobs keyed by unique name.

    Iteration follows registration order.
    """

    def __init__(self):
        # name -> JobDescriptor
        self._jobs: Dict[str, JobDescriptor] = {}

    def add(self, name: str, default_schedule: str, handler: JobHandler) -> JobDescriptor:
        """
        Store a new descriptor for ``name``.

        Raises:
            ConfigurationError: If a job with the same name is already registered
        """
        if name in self._jobs:
            raise ConfigurationError(f"Job {name} already registered")

        descriptor = JobDescriptor(
            name=name,
            default_schedule=default_schedule,
            current_schedule=default_schedule,
            handler=handler,
        )
        self._jobs[name] = descriptor
        return descriptor

    def get(self, name: str) -> Optional[JobDescriptor]:
        return self._jobs.get(name)

    def require(self, name: str) -> JobDescriptor:
        """
        Get a descriptor or fail.

        Raises:
            ConfigurationError: If the job is not registered
        """
        descriptor = self._jobs.get(name)
        if descriptor is None:
            raise ConfigurationError(f"Job {name} not registered")
        return descriptor

    def remove(self, name: str) -> JobDescriptor:
        descriptor = self.require(name)
        del self._jobs[name]
        return descriptor

    def all(self) -> List[JobDescriptor]:
        return list(self._jobs.values())

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)


class RunningSet:
    """
    Names of jobs whose handler is currently executing.

    ``try_acquire`` is an atomic check-and-add, so two fires of the same job
    can never both get past it even if they are dispatched from different
    threads.
    """

    def __init__(self):
        self._names: Set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, name: str) -> bool:
        with self._lock:
            if name in self._names:
                return False
            self._names.add(name)
            return True

    def release(self, name: str) -> None:
        with self._lock:
            self._names.discard(name)

    def snapshot(self) -> List[str]:
        with self._lock:
            return sorted(self._names)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)
