"""Tagged results for operations that cross the auth layer boundary.

Expected failures (bad token, wrong role, expired challenge) come back as ``Err``;
exceptions are reserved for faults nobody planned for.
"""
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from authgate.core.constants import ERROR_STATUS, ErrorKind

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
    code: Optional[str] = None
    details: Any = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def status_code(self) -> int:
        return ERROR_STATUS[self.kind]

    @property
    def error_code(self) -> str:
        return self.code or self.kind.value

    def to_exception(self):
        from authgate.utils.errors import ApiError

        return ApiError(
            status_code=self.status_code,
            code=self.error_code,
            message=self.message,
            details=self.details,
        )


Result = Union[Ok[T], Err]
