from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from cfiportal.core.errors import ErrorKind, RemoteApiError


T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    status_code: int | None = None
    correlation_id: str | None = None

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_exception(cls, exc: RemoteApiError) -> "Err":
        return cls(
            kind=exc.kind,
            message=str(exc),
            status_code=exc.status_code,
            correlation_id=exc.correlation_id,
        )


Result = Union[Ok[Any], Err]
