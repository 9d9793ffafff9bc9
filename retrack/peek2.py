"""Two-item lookahead over a lazy iterator of frames."""

from typing import Generic, Iterable, Iterator, Optional, TypeVar

T = TypeVar("T")

_EMPTY = object()


class Peek2(Generic[T]):
    """
    Iterator wrapper that can look at the next two items without consuming them.

    Items are fetched lazily: nothing is pulled from the underlying iterator
    until a peek or advance needs it, and at most two items are held at once.
    Exceptions raised by the underlying iterator propagate from the call that
    triggered the fetch.
    """

    def __init__(self, iterable: Iterable[T]) -> None:
        self._inner: Iterator[T] = iter(iterable)
        self._first = _EMPTY
        self._second = _EMPTY
        self._done = False

    def _pull(self):
        if self._done:
            return _EMPTY
        try:
            return next(self._inner)
        except StopIteration:
            self._done = True
            return _EMPTY

    def _fill_first(self) -> None:
        if self._first is _EMPTY:
            self._first = self._pull()

    def _fill_second(self) -> None:
        self._fill_first()
        if self._first is not _EMPTY and self._second is _EMPTY:
            self._second = self._pull()

    def peek1(self) -> Optional[T]:
        """Return the first upcoming item, or None when exhausted."""
        self._fill_first()
        return None if self._first is _EMPTY else self._first

    def peek2(self) -> Optional[T]:
        """Return the second upcoming item, or None if fewer than two remain."""
        self._fill_second()
        return None if self._second is _EMPTY else self._second

    def advance(self) -> Optional[T]:
        """Drop the first upcoming item and return it (None when exhausted)."""
        self._fill_first()
        item = self._first
        self._first = self._second
        self._second = _EMPTY
        return None if item is _EMPTY else item

    def is_exhausted(self) -> bool:
        return self.peek1() is None

    def __iter__(self) -> "Peek2[T]":
        return self

    def __next__(self) -> T:
        item = self.advance()
        if item is None:
            raise StopIteration
        return item
