"""An executor that runs every submitted call in its own worker process."""

import concurrent.futures
import functools
import logging
import multiprocessing
import threading
from collections.abc import Callable
from multiprocessing.connection import Connection

logger = logging.getLogger(__name__)


class TaskExecutionError(Exception):
    """A worker process ended without reporting a result."""


def _run_in_child(
    conn: Connection,
    initializer: Callable[..., None] | None,
    initargs: tuple,
    fn: Callable[[], object],
) -> None:
    if initializer is not None:
        initializer(*initargs)
    try:
        try:
            result = fn()
        except Exception as e:
            try:
                conn.send((False, e))
            except Exception:
                # The exception itself can't be pickled
                conn.send((False, RuntimeError(f"{type(e).__name__}: {e}")))
            return
        try:
            conn.send((True, result))
        except Exception as e:
            conn.send((False, TaskExecutionError(f"Result could not be returned from the worker: {e}")))
    finally:
        conn.close()


class ProcessPerTaskExecutor(concurrent.futures.Executor):
    """Run each call in a fresh process, so a worker that crashes only fails its own call.

    Calls start immediately; bounding how many run at once is up to the caller.
    ``shutdown(cancel_futures=True)`` terminates the workers that are still running.
    """

    def __init__(
        self,
        initializer: Callable[..., None] | None = None,
        initargs: tuple = (),
        mp_context: multiprocessing.context.BaseContext | None = None,
    ):
        self._initializer = initializer
        self._initargs = initargs
        self._mp_context = mp_context or multiprocessing.get_context()
        self._lock = threading.Lock()
        self._processes: set[multiprocessing.process.BaseProcess] = set()
        self._shutdown = False

    def submit(self, fn, /, *args, **kwargs) -> concurrent.futures.Future:
        future: concurrent.futures.Future = concurrent.futures.Future()
        future.set_running_or_notify_cancel()
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")
            recv_conn, send_conn = self._mp_context.Pipe(duplex=False)
            process = self._mp_context.Process(
                target=_run_in_child,
                args=(send_conn, self._initializer, self._initargs, functools.partial(fn, *args, **kwargs)),
                daemon=True,
            )
            process.start()
            # Only the child may hold the write end, so its death shows up as EOF
            send_conn.close()
            self._processes.add(process)
        threading.Thread(target=self._watch, args=(process, recv_conn, future), daemon=True).start()
        return future

    def _watch(
        self,
        process: multiprocessing.process.BaseProcess,
        conn: Connection,
        future: concurrent.futures.Future,
    ) -> None:
        try:
            ok, value = conn.recv()
        except EOFError:
            ok, value = False, None
        except Exception as e:
            ok, value = False, TaskExecutionError(f"Could not read the worker's result: {e}")
        finally:
            conn.close()
        process.join()
        with self._lock:
            self._processes.discard(process)

        if ok:
            future.set_result(value)
        elif value is None:
            logger.debug("Worker %s exited with code %s", process.pid, process.exitcode)
            future.set_exception(TaskExecutionError(f"Worker process exited with code {process.exitcode}"))
        else:
            future.set_exception(value)

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        with self._lock:
            self._shutdown = True
            processes = list(self._processes)
        if cancel_futures:
            for process in processes:
                process.terminate()
        if wait:
            for process in processes:
                process.join()
