import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from nexus_desk.models.ticket import AppointmentDetails

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PendingUndo:
    ticket_id: str
    snapshot: AppointmentDetails
    deadline: float
    handle: Optional[asyncio.TimerHandle] = None

    def matches(self, snapshot: Optional[AppointmentDetails]) -> bool:
        if snapshot is None:
            return True
        return snapshot.model_dump() == self.snapshot.model_dump()


class UndoTimerRegistry:
    """One undo slot per ticket, cleared when its window elapses.

    Arming a slot that is already armed cancels the older timer and drops its snapshot.
    """

    def __init__(self, window_seconds: float = 10.0):
        self.window_seconds = window_seconds
        self._slots: dict[str, PendingUndo] = {}

    def arm(self, ticket_id: str, snapshot: AppointmentDetails) -> PendingUndo:
        loop = asyncio.get_running_loop()
        self.cancel(ticket_id)
        entry = PendingUndo(
            ticket_id=ticket_id,
            snapshot=snapshot.model_copy(deep=True),
            deadline=loop.time() + self.window_seconds,
        )
        self._schedule(loop, entry)
        return entry

    def _schedule(self, loop: asyncio.AbstractEventLoop, entry: PendingUndo) -> None:
        entry.handle = loop.call_later(max(entry.deadline - loop.time(), 0), self._expire, entry)
        self._slots[entry.ticket_id] = entry

    def _expire(self, entry: PendingUndo) -> None:
        # a newer slot for the same ticket must survive an older timer firing
        if self._slots.get(entry.ticket_id) is entry:
            del self._slots[entry.ticket_id]
            logger.info("Undo window closed for appointment %s on ticket %s", entry.snapshot.id, entry.ticket_id)

    def pending(self, ticket_id: str) -> Optional[PendingUndo]:
        entry = self._slots.get(ticket_id)
        if entry is None:
            return None
        if asyncio.get_running_loop().time() >= entry.deadline:
            self.cancel(ticket_id)
            return None
        return entry

    def take(self, ticket_id: str) -> Optional[PendingUndo]:
        entry = self.pending(ticket_id)
        if entry is not None:
            self.cancel(ticket_id)
        return entry

    def put_back(self, entry: PendingUndo) -> bool:
        """Re-arm a taken slot for whatever remains of its original window."""
        loop = asyncio.get_running_loop()
        if loop.time() >= entry.deadline or entry.ticket_id in self._slots:
            return False
        self._schedule(loop, entry)
        return True

    def cancel(self, ticket_id: str) -> None:
        entry = self._slots.pop(ticket_id, None)
        if entry is not None and entry.handle is not None:
            entry.handle.cancel()

    def __contains__(self, ticket_id: str) -> bool:
        return ticket_id in self._slots

    def __len__(self) -> int:
        return len(self._slots)
