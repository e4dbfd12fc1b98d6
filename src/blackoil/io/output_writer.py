"""Writers of state snapshots.

:class:`NpzOutputWriter` stores every snapshot in a numpy ``.npz`` archive.
:class:`AsyncOutputWriter` moves the writing of any writer to a background thread, so
that the simulation proceeds while the previous snapshot is written. Snapshots are
copies of the state, so the simulation may modify its state freely after posting.

Example:
    Writing in the background, with at most four pending snapshots::

        with AsyncOutputWriter(NpzOutputWriter("results", "run")) as writer:
            simulator = Simulator(model, solver, params, schedule, writer)
            simulator.run(state, well_state)

"""

from __future__ import annotations

import abc
import logging
import os
import queue
import threading
from typing import Optional

import numpy as np

from blackoil.models.state import StateSnapshot

__all__ = ["OutputWriter", "NpzOutputWriter", "AsyncOutputWriter"]

logger = logging.getLogger(__name__)

_STOP = object()
"""Sentinel telling the background writer to stop."""


class OutputWriter(abc.ABC):
    """Interface of the snapshot writers."""

    @abc.abstractmethod
    def write(self, snapshot: StateSnapshot) -> None:
        """Write a snapshot."""

    def close(self) -> None:
        """Finish all pending writes."""

    def __enter__(self) -> OutputWriter:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


class NpzOutputWriter(OutputWriter):
    """Write each snapshot to its own ``.npz`` file.

    The files are named ``<file_name>_<index>.npz`` with a zero padded running index.

    Parameters:
        folder_name: ``default=None``

            Folder of the output, created if necessary. The working directory if not
            given.
        file_name: ``default="snapshot"``

            Prefix of the file names.
        padding: ``default=6``

            Number of digits of the running index.

    """

    def __init__(
        self,
        folder_name: Optional[str] = None,
        file_name: str = "snapshot",
        padding: int = 6,
    ) -> None:
        self._folder_name: Optional[str] = folder_name
        """Folder name for output."""
        self._file_name: str = file_name
        """Prefix for output files."""
        self._padding: int = padding
        """Zero padding of the running index."""
        self._counter: int = 0
        self.written_files: list[str] = []
        """Paths of the files written so far."""

    def _append_folder_name(self, name: str) -> str:
        if self._folder_name is None:
            return name
        if not os.path.exists(self._folder_name):
            os.makedirs(self._folder_name)
        return os.path.join(self._folder_name, name)

    def _make_file_name(self, index: int) -> str:
        return self._file_name + "_" + str(index).zfill(self._padding) + ".npz"

    def write(self, snapshot: StateSnapshot) -> None:
        path = self._append_folder_name(self._make_file_name(self._counter))
        np.savez(path, **snapshot.to_dict())
        self._counter += 1
        self.written_files.append(path)
        logger.debug(f"Wrote {snapshot} to {path}")

    @staticmethod
    def load(path: str) -> dict[str, np.ndarray]:
        """Arrays of a written snapshot by name."""
        with np.load(path) as data:
            return {key: data[key] for key in data.files}


class AsyncOutputWriter(OutputWriter):
    """Forward snapshots to a writer running in one background thread.

    Posting a snapshot blocks while ``max_queue`` snapshots are pending. Snapshots are
    written in the order they are posted. An error raised by the wrapped writer is
    raised again by the next call to :meth:`write` or :meth:`close`.

    Parameters:
        writer: The writer doing the actual work.
        max_queue: ``default=4``

            Maximal number of pending snapshots.

    """

    def __init__(self, writer: OutputWriter, max_queue: int = 4) -> None:
        if max_queue < 1:
            raise ValueError("The queue must hold at least one snapshot.")
        self.writer = writer
        """The wrapped writer."""
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue)
        self._error: Optional[Exception] = None
        self._closed = False
        self._thread = threading.Thread(
            target=self._worker, name="blackoil-output", daemon=False
        )
        self._thread.start()

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if self._error is None:
                    self.writer.write(item)
            except Exception as exc:
                logger.error(f"Writing of {item} failed: {exc}")
                self._error = exc
            finally:
                self._queue.task_done()

    def _check_error(self) -> None:
        if self._error is not None:
            error, self._error = self._error, None
            raise RuntimeError("Background output writer failed.") from error

    def write(self, snapshot: StateSnapshot) -> None:
        if self._closed:
            raise RuntimeError("Cannot write to a closed output writer.")
        self._check_error()
        self._queue.put(snapshot)

    def flush(self) -> None:
        """Wait until all posted snapshots are written."""
        self._queue.join()
        self._check_error()

    def close(self) -> None:
        """Write all pending snapshots and stop the background thread."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._thread.join()
        self.writer.close()
        self._check_error()

    @property
    def pending(self) -> int:
        """Approximate number of snapshots waiting to be written."""
        return self._queue.qsize()
