"""Bounded-concurrency worker dispatch."""

from collector.workers.pool import WorkerPool

__all__ = ["WorkerPool"]
