"""Tagged results for callers that branch on success or failure.

:func:`capture` awaits an operation and returns :class:`Ok` or :class:`Err`
instead of raising. Dispatch on the variant and on the error's type, never
on its message::

    outcome = await capture(manager.complete_login(request_id, code))
    if isinstance(outcome, Err) and isinstance(outcome.error, SecurityVerificationFailed):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Generic, TypeVar, Union

from duallink.exceptions import AuthError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: AuthError

    @property
    def exit_code(self) -> int:
        return self.error.exit_code


Outcome = Union[Ok[T], Err]


async def capture(operation: Awaitable[T]) -> Outcome[T]:
    """Await *operation*, turning an :class:`~duallink.exceptions.AuthError` into :class:`Err`.

    Anything that is not an authentication error propagates unchanged.
    """
    try:
        return Ok(await operation)
    except AuthError as exc:
        return Err(exc)
