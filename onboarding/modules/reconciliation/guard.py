import threading
from enum import Enum


class GuardState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SingleFlightGuard:
    """
    Prevents overlapping runs of one job inside a single process.

    Not distributed: two process instances can still run the job at the same
    time, which the job must tolerate.
    """

    def __init__(self, name: str):
        self.name = name
        self._state = GuardState.IDLE
        self._lock = threading.Lock()

    @property
    def state(self) -> GuardState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is GuardState.RUNNING

    def try_acquire(self) -> bool:
        """Move Idle -> Running. Returns False if a run is already in progress."""
        with self._lock:
            if self._state is GuardState.RUNNING:
                return False
            self._state = GuardState.RUNNING
            return True

    def release(self) -> None:
        with self._lock:
            self._state = GuardState.IDLE
