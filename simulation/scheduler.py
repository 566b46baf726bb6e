# scheduler.py
import queue
import logging
import threading

IDLE_SLEEP = 0.005


class RenderScheduler:
    """
    Dirty-flag gate in front of the trace kernel.

    The flag is set by any camera, window or scene change and cleared once a
    trace+present cycle finished, unless the camera is still moving, in which
    case it stays armed so the next frame traces again.
    """
    def __init__(self, idle_sleep=IDLE_SLEEP):
        self._dirty = threading.Event()
        self._dirty.set()
        self.idle_sleep = idle_sleep

    @property
    def dirty(self):
        return self._dirty.is_set()

    def invalidate(self):
        self._dirty.set()

    def should_render(self):
        return self._dirty.is_set()

    def frame_done(self, moving):
        if moving:
            self._dirty.set()
        else:
            self._dirty.clear()

    def wait_idle(self):
        """Yield the processor for one idle frame; returns early if invalidated meanwhile."""
        self._dirty.wait(self.idle_sleep)


class CommandChannel:
    """
    FIFO of mutations posted from input/UI threads and applied on the render thread.

    Each command is a callable taking the engine. Commands run in arrival order;
    two commands touching the same field simply leave the last value in place.
    """
    def __init__(self):
        self._queue = queue.SimpleQueue()

    def post(self, command):
        if not callable(command):
            raise TypeError(f"Command must be callable, got {type(command).__name__}")
        self._queue.put(command)

    def pending(self):
        return not self._queue.empty()

    def drain(self, target):
        """Apply every queued command to *target*; returns how many ran."""
        n = 0
        while True:
            try:
                command = self._queue.get_nowait()
            except queue.Empty:
                break
            command(target)
            n += 1
        if n:
            logging.debug(f"Applied {n} queued command(s)")
        return n
