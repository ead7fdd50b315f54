# Overview: Background task runner for slow, I/O-bound side effects.

"""
Background Task Runner

Document generation and notification dispatch are slow and I/O-bound. They run
on a small thread pool, each inside its own application context, and hand the
caller a TaskHandle:

- handle.future:        completion signal (result or exception)
- handle.cancel_event:  cooperative cancellation token checked by the task
- handle.wait(timeout): block for the result; on timeout the token is set,
                        the future is cancelled and TaskTimeout is raised

TASKS_ALWAYS_EAGER runs the task inline and returns an already-completed
handle (used by tests and single-process scripts).
"""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field

from flask import Flask, current_app

from .errors import TaskTimeout


class TaskCancelled(Exception):
    """Raised inside a task when its cancel token has been set."""


@dataclass
class TaskHandle:
    name: str
    future: Future
    cancel_event: threading.Event = field(default_factory=threading.Event)
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def done(self) -> bool:
        return self.future.done()

    def cancel(self) -> None:
        self.cancel_event.set()
        self.future.cancel()

    def wait(self, timeout: float | None = None):
        try:
            return self.future.result(timeout=timeout)
        except FutureTimeoutError:
            self.cancel()
            raise TaskTimeout(f"Task {self.name} did not finish within {timeout}s")


def check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise TaskCancelled()


class TaskRunner:
    """Flask extension wrapping a ThreadPoolExecutor."""

    def __init__(self, app: Flask | None = None):
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.config.setdefault("TASKS_ALWAYS_EAGER", False)
        app.config.setdefault("TASK_WORKERS", 4)
        app.extensions["quotedesk.tasks"] = self

    def _get_executor(self, workers: int) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=workers, thread_name_prefix="quotedesk-task"
                )
            return self._executor

    def submit(self, name: str, func, *args, **kwargs) -> TaskHandle:
        """
        Schedule func(*args, cancel_event=..., **kwargs).

        The callable must accept a `cancel_event` keyword argument.
        """
        app = current_app._get_current_object()
        cancel_event = threading.Event()

        def _run():
            with app.app_context():
                check_cancelled(cancel_event)
                return func(*args, cancel_event=cancel_event, **kwargs)

        if app.config.get("TASKS_ALWAYS_EAGER"):
            future: Future = Future()
            try:
                future.set_result(func(*args, cancel_event=cancel_event, **kwargs))
            except Exception as exc:
                future.set_exception(exc)
            return TaskHandle(name=name, future=future, cancel_event=cancel_event)

        executor = self._get_executor(int(app.config.get("TASK_WORKERS", 4)))
        future = executor.submit(_run)
        return TaskHandle(name=name, future=future, cancel_event=cancel_event)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None
