from __future__ import annotations

import asyncio
import threading
from typing import Dict, List, Tuple


class Rendezvous:
    """Lets a request park until a matching webhook arrives.

    Best effort: a notify that lands before anyone waits is dropped, so
    callers always re-read the database after waking or timing out.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._waiters: Dict[str, List[Tuple[asyncio.AbstractEventLoop, asyncio.Event]]] = {}

    async def wait(self, name: str, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        event = asyncio.Event()
        entry = (loop, event)
        with self._lock:
            self._waiters.setdefault(name, []).append(entry)
        try:
            await asyncio.wait_for(event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            with self._lock:
                waiters = self._waiters.get(name)
                if waiters and entry in waiters:
                    waiters.remove(entry)
                    if not waiters:
                        del self._waiters[name]

    def notify(self, name: str) -> int:
        """Wake everyone currently parked on ``name``. Safe to call from any thread."""
        with self._lock:
            waiters = self._waiters.pop(name, [])
        for loop, event in waiters:
            loop.call_soon_threadsafe(event.set)
        return len(waiters)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(w) for w in self._waiters.values())


def session_key(session_id: int) -> str:
    return f"rsvp_session:{session_id}"
