"""Background workers for async processing tasks."""

from swapmylook.workers.generation_worker import run_generation_worker

__all__ = [
    "run_generation_worker",
]
