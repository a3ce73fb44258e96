from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RuntimePolicy:
    """Execution policy shared by library calls and the command-line entry point."""

    allow_parallel: bool = True

    def resolve_workers(self, n_workers: int | None, n_tasks: int | None = None) -> int:
        """Clamp a requested worker count to something the sieve pool can use."""
        if not self.allow_parallel or n_workers is None:
            return 1
        workers = max(1, int(n_workers))
        if n_tasks is not None:
            workers = min(workers, max(1, int(n_tasks)))
        return workers
