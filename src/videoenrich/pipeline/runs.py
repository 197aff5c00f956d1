"""In-flight pipeline runs and the observers attached to them."""

from __future__ import annotations

import threading
from typing import Iterator, List, Optional

from ..models import PipelineStatus, StatusUpdate


class PipelineRun:
    """One invocation of the pipeline for one entity.

    Holds the ordered history of status updates so that observers attaching
    late still see everything, and counts observers so the run is cancelled
    only once nobody is waiting for it anymore.
    """

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        self._cond = threading.Condition()
        self._history: List[StatusUpdate] = []
        self._final: Optional[PipelineStatus] = None
        self._observers = 0
        self._cancel = threading.Event()
        self.thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Producer side (orchestrator worker)
    # ------------------------------------------------------------------

    def publish(self, status: PipelineStatus, message: str = "") -> StatusUpdate:
        with self._cond:
            update = StatusUpdate(
                entity_id=self.entity_id,
                status=status,
                message=message,
                seq=len(self._history),
            )
            self._history.append(update)
            self._cond.notify_all()
            return update

    def finish(self, status: PipelineStatus, message: str = "") -> None:
        """Publish the final status and end every observer's stream."""
        with self._cond:
            if self._final is not None:
                return
            self.publish(status, message)
            self._final = status
            self._cond.notify_all()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def wait_for_cancel(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, waking early if the run is cancelled."""
        return self._cancel.wait(timeout)

    # ------------------------------------------------------------------
    # Observer side
    # ------------------------------------------------------------------

    @property
    def done(self) -> bool:
        with self._cond:
            return self._final is not None

    @property
    def latest(self) -> Optional[StatusUpdate]:
        with self._cond:
            return self._history[-1] if self._history else None

    def history(self) -> List[StatusUpdate]:
        with self._cond:
            return list(self._history)

    def attach(self, *, attached: bool = False) -> "RunHandle":
        """Add an observer. A pending cancellation is withdrawn while the run is still going."""
        with self._cond:
            self._observers += 1
            if self._final is None:
                self._cancel.clear()
        return RunHandle(self, attached=attached)

    def _detach(self) -> None:
        with self._cond:
            self._observers = max(0, self._observers - 1)
            if self._observers == 0 and self._final is None:
                self._cancel.set()
            self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> Optional[PipelineStatus]:
        with self._cond:
            self._cond.wait_for(lambda: self._final is not None, timeout=timeout)
            return self._final


class RunHandle:
    """What a caller of ``run()`` holds: a view onto a (possibly shared) run.

    ``attached`` is True when the caller joined a run that another caller
    had already started.
    """

    def __init__(self, run: PipelineRun, *, attached: bool) -> None:
        self.run = run
        self.attached = attached
        self._detached = False
        self._lock = threading.Lock()

    @property
    def entity_id(self) -> str:
        return self.run.entity_id

    @property
    def status(self) -> Optional[PipelineStatus]:
        """Most recent status published by the run."""
        latest = self.run.latest
        return latest.status if latest else None

    @property
    def done(self) -> bool:
        return self.run.done

    def wait(self, timeout: Optional[float] = None) -> Optional[PipelineStatus]:
        """Block until the run ends; None if ``timeout`` elapsed first."""
        return self.run.wait(timeout)

    def updates(self, *, poll_s: Optional[float] = None) -> Iterator[Optional[StatusUpdate]]:
        """Replay the run's history, then follow it live until it ends.

        With ``poll_s`` set, yields None whenever that many seconds pass
        without news, so a caller (e.g. an SSE stream) can send keep-alives.
        Iteration stops early if this handle is cancelled.
        """
        cond = self.run._cond
        index = 0
        while True:
            with cond:
                if index >= len(self.run._history) and self.run._final is None and not self._detached:
                    cond.wait(timeout=poll_s)
                batch = self.run._history[index:]
                index += len(batch)
                finished = self.run._final is not None
                detached = self._detached
            for update in batch:
                yield update
            if finished and index >= len(self.run.history()):
                return
            if detached:
                return
            if not batch and poll_s is not None:
                yield None

    def cancel(self) -> None:
        """Stop observing. The run is cancelled when its last observer leaves."""
        with self._lock:
            if self._detached:
                return
            self._detached = True
        self.run._detach()
