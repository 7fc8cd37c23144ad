from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from story_engine.auth import Principal


class Clock(Protocol):
    def current_utc(self) -> datetime: ...


class Identity(Protocol):
    def get_current(self) -> Principal: ...


class RequestLogger(Protocol):
    def log_request_payload(self, use_case: str, payload: Any) -> None: ...

    def log_request_duration(self, use_case: str, elapsed_ms: float) -> None: ...

    def log_exception(self, exc: BaseException) -> None: ...

    def log_error(self, message: str) -> None: ...

    def log_information(self, message: str) -> None: ...

    def log_debug(self, message: str) -> None: ...


class SystemClock:
    def current_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class StaticIdentity:
    """Principal established by the transport for the current request."""

    def __init__(self, principal: Principal):
        self.principal = principal

    def get_current(self) -> Principal:
        return self.principal


class StructlogRequestLogger:
    def __init__(self, name: str = "story_engine"):
        self._logger = structlog.get_logger(name)

    def log_request_payload(self, use_case: str, payload: Any) -> None:
        if hasattr(payload, "model_dump"):
            payload = payload.model_dump(mode="json")
        self._logger.info("request_payload", use_case=use_case, payload=payload)

    def log_request_duration(self, use_case: str, elapsed_ms: float) -> None:
        self._logger.info("request_duration", use_case=use_case, elapsed_ms=round(elapsed_ms, 3))

    def log_exception(self, exc: BaseException) -> None:
        self._logger.error("unhandled_exception", exc_info=exc)

    def log_error(self, message: str) -> None:
        self._logger.error(message)

    def log_information(self, message: str) -> None:
        self._logger.info(message)

    def log_debug(self, message: str) -> None:
        self._logger.debug(message)
