"""Namespace aggregator: async barrier join over per-namespace producers.

WHY: The application and each service finish producing their assets at
unpredictable times, but the data tarball can only be written once all
of them are in. A producer that fails must abort the whole build rather
than leave a package with a missing service.

HOW: Each namespace gets a Deferred: a one-shot completion slot backed
by an asyncio.Event. Producers settle their slot with resolve() or
reject(). drain() waits for every slot (optionally under a deadline),
then feeds the builder in registration order, so the tar entry order
never depends on which producer happened to finish first.

RULES:
- One slot per namespace; registering the same namespace twice fails
- Each slot settles exactly once; a second resolve/reject fails
- drain() raises the first producer failure it observes and adds nothing
- drain() feeds the builder in registration order, never arrival order
- A deadline expiry raises AggregationTimeoutError naming pending namespaces
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Generic, List, Mapping, Optional, TypeVar

from webos_packager.core.ipk import IPKBuilder
from webos_packager.core.models import Namespace

logger = logging.getLogger(__name__)

T = TypeVar("T")

Assets = Mapping[str, bytes]


class AggregatorError(Exception):
    """Raised when producers report in a way the join cannot accept."""


class AggregationTimeoutError(TimeoutError):
    """Raised when producers are still pending at the deadline."""

    def __init__(self, pending: List[Namespace], timeout: float) -> None:
        self.pending = pending
        self.timeout = timeout
        super().__init__(
            "Timed out after {:g}s waiting for: {}".format(
                timeout, ", ".join(ns.id for ns in pending)
            )
        )


class Deferred(Generic[T]):
    """A value that is supplied exactly once and awaited any number of times.

    WHY: asyncio.Future must be created inside a running loop, but slots
    are registered while the build is still being configured. An Event
    binds to the loop lazily on first wait.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        return self._event.is_set()

    def resolve(self, value: T) -> None:
        if self.done:
            raise AggregatorError("Deferred already settled.")
        self._value = value
        self._event.set()

    def reject(self, error: BaseException) -> None:
        if self.done:
            raise AggregatorError("Deferred already settled.")
        self._error = error
        self._event.set()

    async def wait(self) -> T:
        await self._event.wait()
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]


class NamespaceAggregator:
    """Collects one asset mapping per namespace, then feeds the builder.

    RULES:
    - register() every namespace before any producer starts
    - resolve()/reject() may be called from any coroutine on the same loop
    - drain() may be called once; it leaves the slots settled
    """

    def __init__(self) -> None:
        self._slots: Dict[Namespace, Deferred[Assets]] = {}

    def register(self, namespace: Namespace) -> Deferred[Assets]:
        if namespace in self._slots:
            raise AggregatorError(
                "Namespace {} ({}) registered twice.".format(namespace.id, namespace.kind.value)
            )
        slot: Deferred[Assets] = Deferred()
        self._slots[namespace] = slot
        return slot

    @property
    def namespaces(self) -> List[Namespace]:
        return list(self._slots)

    @property
    def pending(self) -> List[Namespace]:
        return [ns for ns, slot in self._slots.items() if not slot.done]

    def resolve(self, namespace: Namespace, assets: Assets) -> None:
        self._slot(namespace).resolve(assets)
        logger.debug("Namespace %s resolved with %d asset(s)", namespace.id, len(assets))

    def reject(self, namespace: Namespace, error: BaseException) -> None:
        self._slot(namespace).reject(error)
        logger.debug("Namespace %s rejected: %s", namespace.id, error)

    def _slot(self, namespace: Namespace) -> Deferred[Assets]:
        try:
            return self._slots[namespace]
        except KeyError:
            raise AggregatorError("Namespace {} was never registered.".format(namespace.id)) from None

    async def collect(self, timeout: Optional[float] = None) -> List[tuple[Namespace, Assets]]:
        """Wait for every slot and return results in registration order.

        Raises:
            AggregatorError: If no namespace was registered.
            AggregationTimeoutError: If the deadline passes first.
            Exception: The first producer failure, unchanged.
        """
        if not self._slots:
            raise AggregatorError("No namespaces registered.")

        namespaces = list(self._slots)
        waits = [asyncio.ensure_future(self._slots[ns].wait()) for ns in namespaces]
        try:
            done, not_done = await asyncio.wait(
                waits, timeout=timeout, return_when=asyncio.FIRST_EXCEPTION
            )
            for task in waits:
                if task in done and task.exception() is not None:
                    raise task.exception()
            if not_done:
                raise AggregationTimeoutError(self.pending, timeout)
        finally:
            for task in waits:
                task.cancel()

        return [(ns, task.result()) for ns, task in zip(namespaces, waits)]

    async def drain(self, builder: IPKBuilder, timeout: Optional[float] = None) -> IPKBuilder:
        """Wait for all producers, then add their assets to ``builder``."""
        for namespace, assets in await self.collect(timeout):
            builder.add_entries(namespace, assets)
        logger.info("Aggregated %d namespace(s)", len(self._slots))
        return builder
