import logging
import time
from typing import Callable, List, Optional

from config.settings import STATUS_ERROR_SECONDS, STATUS_SUCCESS_SECONDS
from noise_services.models import OperationStatus, StatusPhase

logger = logging.getLogger(__name__)

HIDDEN = OperationStatus()


class StatusNotifier:
    """
    Single-slot, time-limited notification of what the orchestrator is doing.

    A publish overwrites whatever is showing. The slot hides itself once its
    display duration has passed; expiry is evaluated on read, so no timer task
    has to outlive the operation that published it.
    """

    def __init__(
        self,
        success_seconds: float = STATUS_SUCCESS_SECONDS,
        error_seconds: float = STATUS_ERROR_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.success_seconds = success_seconds
        self.error_seconds = error_seconds
        self._clock = clock
        self._slot = HIDDEN
        self._expires_at: Optional[float] = None
        self._listeners: List[Callable[[OperationStatus], None]] = []

    def add_listener(self, listener: Callable[[OperationStatus], None]) -> None:
        self._listeners.append(listener)

    def publish(self, phase: StatusPhase, message: str) -> OperationStatus:
        status = OperationStatus(visible=True, phase=phase, message=message)
        self._slot = status
        # pending stays up until the operation publishes its outcome
        if phase == StatusPhase.PENDING:
            self._expires_at = None
        else:
            delay = self.error_seconds if phase == StatusPhase.ERROR else self.success_seconds
            self._expires_at = self._clock() + delay
        logger.debug("status -> %s: %s", phase.value, message)
        for listener in self._listeners:
            listener(status)
        return status

    def pending(self, message: str) -> OperationStatus:
        return self.publish(StatusPhase.PENDING, message)

    def success(self, message: str) -> OperationStatus:
        return self.publish(StatusPhase.SUCCESS, message)

    def error(self, message: str) -> OperationStatus:
        return self.publish(StatusPhase.ERROR, message)

    def current(self) -> OperationStatus:
        if self._expires_at is not None and self._clock() >= self._expires_at:
            self._slot = HIDDEN
            self._expires_at = None
        return self._slot

    def clear(self) -> None:
        self._slot = HIDDEN
        self._expires_at = None
