"""
Debounced username/website uniqueness check.

This module provides:
- Debouncer: A cancellable deferred call; scheduling again before the
  delay elapses supersedes the pending call
- UniquenessValidator: Runs EntryStore.check_username through a
  Debouncer and keeps the resulting field error for display

Invariants:
    - Only the last call scheduled within a quiet period reaches the store
    - Once the delay has elapsed a call is no longer cancellable
    - A result from an older check never overwrites a newer one
    - The validator is advisory; it never blocks create() or update()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from .config import Settings
from .errors import CredStoreError, ValidationError

if TYPE_CHECKING:
    from .store import EntryStore

logger = logging.getLogger(__name__)

USERNAME_FIELD = "username"


class Debouncer:
    """Deferred call that a newer schedule() cancels and replaces.

    Example:
        >>> debouncer = Debouncer(0.5)
        >>> debouncer.schedule(check, "bob", "github.com")
        >>> debouncer.schedule(check, "bobby", "github.com")  # first call dropped
        >>> await debouncer.wait()
    """

    def __init__(self, delay: float) -> None:
        """Initialize the debouncer.

        Args:
            delay: Quiet period in seconds before the call runs
        """
        self.delay = delay
        self._timer: Optional[asyncio.Task] = None
        self._latest: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        """Whether a call is still waiting out its delay."""
        return self._timer is not None and not self._timer.done()

    def schedule(self, func: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Task:
        """Run ``func(*args)`` after the delay, cancelling any pending call.

        Must be called from inside a running event loop.
        """
        self.cancel()
        task = asyncio.ensure_future(self._run(func, args))
        self._timer = task
        self._latest = task
        return task

    def cancel(self) -> bool:
        """Cancel the pending call, if it has not started yet.

        Returns:
            True if a pending call was cancelled
        """
        timer, self._timer = self._timer, None
        if timer is None or timer.done():
            return False
        timer.cancel()
        return True

    async def wait(self) -> Any:
        """Wait for the most recently scheduled call to settle.

        Follows newer schedules made while waiting.

        Returns:
            The call's result, or None if nothing ran or it was cancelled
        """
        task = self._latest
        while task is not None:
            await asyncio.wait({task})
            if task is self._latest:
                return None if task.cancelled() else task.result()
            task = self._latest
        return None

    async def _run(self, func: Callable[..., Awaitable[Any]], args: tuple) -> Any:
        await asyncio.sleep(self.delay)
        if self._timer is asyncio.current_task():
            self._timer = None
        return await func(*args)


class UniquenessValidator:
    """Advisory check that a username is not already stored for a website.

    Attributes:
        editing: Edit mode; an existing match is the entry being edited,
            so no error is reported
        errors: Field name to message, as shown next to the form field
        last_result: Answer of the last completed check (None before any)

    Example:
        >>> validator = UniquenessValidator(store)
        >>> validator.schedule("bob", "github.com")
        >>> await validator.wait()
        >>> validator.error
        'Username already exists for github.com'
    """

    def __init__(
        self,
        store: "EntryStore",
        delay: float = 0.5,
        editing: bool = False,
    ) -> None:
        self._store = store
        self.editing = editing
        self.errors: Dict[str, str] = {}
        self.last_result: Optional[bool] = None
        self._debouncer = Debouncer(delay)
        self._generation = 0
        self._in_flight = 0

    @classmethod
    def from_settings(
        cls,
        store: "EntryStore",
        settings: Optional[Settings] = None,
        editing: bool = False,
    ) -> UniquenessValidator:
        """Build a validator whose quiet period comes from CREDSTORE_DEBOUNCE_MS."""
        settings = settings or Settings()
        return cls(store, delay=settings.debounce_seconds, editing=editing)

    @property
    def delay(self) -> float:
        return self._debouncer.delay

    @property
    def checking(self) -> bool:
        """Whether any store call is in flight, superseded ones included."""
        return self._in_flight > 0

    @property
    def error(self) -> Optional[str]:
        return self.errors.get(USERNAME_FIELD) or None

    @property
    def is_valid(self) -> bool:
        return self.error is None

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def schedule(self, username: str, website: str) -> None:
        """Queue a check for the current form values.

        Blank values cancel any queued check and schedule nothing.
        """
        self._generation += 1
        if not username.strip() or not website.strip():
            self._debouncer.cancel()
            return
        self._debouncer.schedule(self._check, username, website, self._generation)

    def cancel(self) -> None:
        self._debouncer.cancel()

    async def wait(self) -> Optional[bool]:
        """Wait for the latest queued check; returns its answer."""
        return await self._debouncer.wait()

    def as_failure(self) -> Optional[ValidationError]:
        """The current advisory error as a ValidationError, if any."""
        if self.error is None:
            return None
        return ValidationError(self.error, field_name=USERNAME_FIELD, errors=[self.error])

    async def _check(self, username: str, website: str, generation: int) -> Optional[bool]:
        self._in_flight += 1
        try:
            exists = await self._store.check_username(username, website)
        except CredStoreError as e:
            logger.warning(
                f"Error checking username: {e.message}",
                extra={"code": e.code},
            )
            return None
        finally:
            self._in_flight -= 1

        if generation != self._generation:
            logger.debug("Discarding stale username check", extra={"generation": generation})
            return exists

        self.last_result = exists
        if exists and not self.editing:
            self.errors[USERNAME_FIELD] = f"Username already exists for {website}"
        else:
            self.errors.pop(USERNAME_FIELD, None)
        return exists
