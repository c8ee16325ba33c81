#!/usr/bin/env python3
#
# acmedesk/utils/scheduler.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Lightweight async background scheduler for periodic maintenance jobs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, TypedDict

from .time import utcnow

_log = logging.getLogger(__name__)

__all__ = ["Scheduler", "JobStatus"]

# Minimum allowed interval to prevent CPU-pinning tight loops
_MIN_INTERVAL = 1.0
_MAX_BACKOFF = 300.0


class JobStatus(TypedDict):
	"""Status information for a scheduled job."""
	name: str
	interval_seconds: float
	last_success: str | None
	last_attempt: str | None
	is_running: bool
	run_count: int
	fail_count: int


@dataclass
class _Job:
	name: str
	interval_seconds: float
	func: Callable[[], Awaitable[object]]
	run_on_start: bool = False
	initial_delay: float = 0.0
	timeout: float | None = None
	last_success: datetime | None = None
	last_attempt: datetime | None = None
	run_count: int = 0
	fail_count: int = 0


class Scheduler:
	"""Runs async jobs at fixed intervals with exponential backoff on failure.

	Usage::

		scheduler = Scheduler()
		scheduler.add("challenge-sweep", 3600, sweep, run_on_start=True)

		# In lifespan:
		await scheduler.start()
		await scheduler.stop_graceful()
	"""

	def __init__(self) -> None:
		self._jobs: dict[str, _Job] = {}
		self._tasks: dict[str, asyncio.Task] = {}
		self._stop_event: asyncio.Event | None = None
		self._started = False

	def add(
		self,
		name: str,
		interval_seconds: float,
		func: Callable[[], Awaitable[object]],
		*,
		run_on_start: bool = False,
		initial_delay: float = 0.0,
		timeout: float | None = None,
	) -> None:
		"""Register a periodic job.

		Args:
			name: Unique identifier for the job
			interval_seconds: Seconds between executions (minimum 1.0)
			func: Async callable to execute
			run_on_start: Execute once on start (after initial_delay)
			initial_delay: Seconds to wait before the first run (requires run_on_start=True)
			timeout: Per-execution timeout in seconds (None = no limit)

		Raises:
			RuntimeError: If the scheduler is already running
			ValueError: On duplicate name or invalid timing arguments
		"""
		if self._started:
			raise RuntimeError(f"Cannot add job {name!r} while scheduler is running")
		if name in self._jobs:
			raise ValueError(f"Job {name!r} is already registered")
		if interval_seconds < _MIN_INTERVAL:
			raise ValueError(f"interval_seconds must be >= {_MIN_INTERVAL}, got {interval_seconds}")
		if initial_delay < 0:
			raise ValueError(f"initial_delay must be >= 0, got {initial_delay}")
		if initial_delay > 0 and not run_on_start:
			raise ValueError("initial_delay requires run_on_start=True")

		self._jobs[name] = _Job(
			name=name,
			interval_seconds=interval_seconds,
			func=func,
			run_on_start=run_on_start,
			initial_delay=initial_delay,
			timeout=timeout,
		)

	async def start(self) -> None:
		"""Start all registered jobs as background tasks."""
		if self._started:
			return
		self._started = True
		self._stop_event = asyncio.Event()
		for job in self._jobs.values():
			self._tasks[job.name] = asyncio.create_task(self._run_loop(job))
			_log.info("SCHEDULER job=%s interval=%ds started", job.name, job.interval_seconds)

	async def stop_graceful(self, timeout: float = 5.0) -> None:
		"""Signal all loops to stop, then cancel whatever is still running after ``timeout``."""
		if not self._started:
			return
		self._started = False
		if self._stop_event is not None:
			self._stop_event.set()

		pending = [t for t in self._tasks.values() if not t.done()]
		if pending:
			_, not_done = await asyncio.wait(pending, timeout=timeout)
			if not_done:
				_log.warning("SCHEDULER %d tasks did not stop gracefully, forcing cancel", len(not_done))
				for task in not_done:
					task.cancel()
				await asyncio.gather(*not_done, return_exceptions=True)

		self._tasks.clear()
		_log.info("SCHEDULER stopped")

	async def _wait(self, stop_event: asyncio.Event, delay: float) -> bool:
		"""Sleep ``delay`` seconds. Returns True if stop was signalled meanwhile."""
		try:
			await asyncio.wait_for(stop_event.wait(), timeout=delay)
			return True
		except asyncio.TimeoutError:
			return False

	async def _run_loop(self, job: _Job) -> None:
		assert self._stop_event is not None, "_run_loop called without start()"
		stop_event = self._stop_event
		failures = 0
		delay = job.initial_delay if job.run_on_start else job.interval_seconds

		try:
			while self._started:
				if await self._wait(stop_event, delay):
					break
				if await self._execute(job):
					failures = 0
					delay = job.interval_seconds
				else:
					failures += 1
					backoff = min(2.0 ** failures, _MAX_BACKOFF)
					_log.error(
						"SCHEDULER job=%s failed (%d consecutive), backing off %.0fs",
						job.name, failures, backoff,
					)
					delay = backoff
		except asyncio.CancelledError:
			_log.debug("SCHEDULER job=%s cancelled", job.name)
		except Exception:
			_log.exception("SCHEDULER job=%s fatal error in run loop", job.name)

	async def _execute(self, job: _Job) -> bool:
		"""Run a job once. Returns False if it raised or timed out."""
		job.last_attempt = utcnow()
		try:
			if job.timeout is not None:
				await asyncio.wait_for(job.func(), timeout=job.timeout)
			else:
				await job.func()
		except asyncio.TimeoutError:
			job.fail_count += 1
			_log.error("SCHEDULER job=%s timed out after %.1fs (fail #%d)", job.name, job.timeout, job.fail_count)
			return False
		except Exception:
			job.fail_count += 1
			_log.exception("SCHEDULER job=%s failed (fail #%d)", job.name, job.fail_count)
			return False

		job.last_success = job.last_attempt
		job.run_count += 1
		_log.debug("SCHEDULER job=%s completed (run #%d)", job.name, job.run_count)
		return True

	def get_status(self) -> list[JobStatus]:
		"""Return status of all jobs for the health endpoint."""
		return [
			{
				"name": job.name,
				"interval_seconds": job.interval_seconds,
				"last_success": job.last_success.isoformat() if job.last_success else None,
				"last_attempt": job.last_attempt.isoformat() if job.last_attempt else None,
				"is_running": job.name in self._tasks and not self._tasks[job.name].done(),
				"run_count": job.run_count,
				"fail_count": job.fail_count,
			}
			for job in self._jobs.values()
		]
