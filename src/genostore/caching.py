"""Thread-safe lazy values.

Protocol clients and the process registry are expensive to build and must
be built at most once, even when several threads ask for them at the same
time.
"""

import threading
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class OnceCell(Generic[T]):
    """A value computed by ``factory`` on first access, exactly once.

    Concurrent first callers block on a lock while one of them runs the
    factory; they never see a partially built value. If the factory
    raises, the cell stays empty and the next call retries.

    Example:
        client = OnceCell(lambda: boto3.client("s3"))
        client.get().get_object(Bucket="b", Key="k")
    """

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._value: T | None = None
        self._initialized = False

    def get(self) -> T:
        """Return the value, building it on first use."""
        if self._initialized:
            return self._value  # type: ignore[return-value]

        with self._lock:
            # Double-check after acquiring lock
            if not self._initialized:
                self._value = self._factory()
                self._initialized = True
        return self._value  # type: ignore[return-value]

    def set(self, value: T) -> None:
        """Replace the value without running the factory."""
        with self._lock:
            self._value = value
            self._initialized = True

    def reset(self) -> None:
        """Forget the value; the next ``get`` runs the factory again."""
        with self._lock:
            self._value = None
            self._initialized = False

    @property
    def initialized(self) -> bool:
        """True once the value has been built or set."""
        return self._initialized
