# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Run session: the exclusive lock around every mutation of the prefix or ledger.

The lock is a directory created with `mkdir` (atomic on every filesystem we
care about) holding the owner's pid. It is advisory: it only keeps other
binpm processes out. While the lock is held, SIGINT/SIGTERM/SIGHUP are
deferred and re-delivered after release, so an interrupt never leaves the
lock behind or a package half-merged.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from pathlib import Path
from types import FrameType
from typing import Any

from binpm.errors import StateError

logger = logging.getLogger(__name__)

DEFERRED_SIGNALS = tuple(
	s for s in (getattr(signal, name, None) for name in ("SIGINT", "SIGTERM", "SIGHUP")) if s is not None
)


def _pid_alive(pid: int) -> bool:
	try:
		os.kill(pid, 0)
	except ProcessLookupError:
		return False
	except PermissionError:
		return True
	return True


class Session:
	def __init__(self, lock_dir: Path) -> None:
		self.lock_dir = lock_dir
		self.held = False
		self._old_handlers: dict[int, Any] = {}
		self._pending: list[int] = []

	@property
	def pid_path(self) -> Path:
		return self.lock_dir / "pid"

	def owner_pid(self) -> int | None:
		try:
			return int(self.pid_path.read_text(encoding="utf-8").strip())
		except (OSError, ValueError):
			return None

	def acquire(self) -> None:
		self.lock_dir.parent.mkdir(parents=True, exist_ok=True)
		try:
			self.lock_dir.mkdir()
		except FileExistsError as err:
			owner = self.owner_pid()
			if owner is not None and _pid_alive(owner):
				raise StateError(f"another binpm process (pid {owner}) holds {self.lock_dir}") from err
			raise StateError(
				f"stale lock {self.lock_dir} (owner {owner if owner is not None else 'unknown'} is gone); "
				"remove it if no other binpm process is running"
			) from err
		self.pid_path.write_text(f"{os.getpid()}\n", encoding="utf-8")
		self.held = True
		self._defer_signals()
		logger.debug(f"acquired {self.lock_dir}")

	def release(self) -> None:
		if not self.held:
			return
		try:
			self.pid_path.unlink(missing_ok=True)
			self.lock_dir.rmdir()
		except OSError as err:
			logger.error(f"could not release lock {self.lock_dir}: {err}")
		self.held = False
		logger.debug(f"released {self.lock_dir}")
		self._restore_signals()

	def _on_signal(self, signum: int, _frame: FrameType | None) -> None:
		logger.warning(f"received signal {signum}; finishing the current step before exiting")
		self._pending.append(signum)

	def _defer_signals(self) -> None:
		# Handlers can only be installed from the main thread.
		if threading.current_thread() is not threading.main_thread():
			return
		for signum in DEFERRED_SIGNALS:
			self._old_handlers[signum] = signal.signal(signum, self._on_signal)

	def _restore_signals(self) -> None:
		for signum, handler in self._old_handlers.items():
			signal.signal(signum, handler)
		self._old_handlers.clear()
		pending, self._pending = self._pending, []
		if pending:
			signal.raise_signal(pending[0])

	def __enter__(self) -> "Session":
		self.acquire()
		return self

	def __exit__(self, *exc_info: object) -> None:
		self.release()
