"""
Gateway availability registry.

Keeps the failover priority order and a per-gateway "unavailable until"
deadline. The registry is the only in-memory state shared between
concurrent payments, so every mutation happens under one lock.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Dict, Iterable, List, Optional

from django.conf import settings

logger = logging.getLogger(__name__)


DEFAULT_PRIORITY = ['zarinpal', 'payir', 'nextpay']
DEFAULT_COOLDOWN_SECONDS = 60
DEFAULT_FAILURE_THRESHOLD = 2
DEFAULT_FAILURE_WINDOW_SECONDS = 30


class GatewayRegistry:
    """
    Ordered gateways with transient unavailability.

    A non-retryable failure takes a gateway out of rotation immediately;
    retryable failures do so once ``failure_threshold`` of them land inside
    ``failure_window_seconds``. Gateways come back once their cool-down
    deadline passes.
    """

    def __init__(
        self,
        priority: Optional[Iterable[str]] = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        failure_window_seconds: float = DEFAULT_FAILURE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.priority: List[str] = list(priority or DEFAULT_PRIORITY)
        self.cooldown_seconds = cooldown_seconds
        self.failure_threshold = max(1, int(failure_threshold))
        self.failure_window_seconds = failure_window_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._unavailable_until: Dict[str, float] = {}
        self._failures: Dict[str, deque] = {}

    def _available(self, gateway_id: str, now: float) -> bool:
        until = self._unavailable_until.get(gateway_id)
        if until is None:
            return True
        if until <= now:
            del self._unavailable_until[gateway_id]
            logger.info(f"Gateway {gateway_id} cool-down expired")
            return True
        return False

    def is_available(self, gateway_id: str) -> bool:
        with self._lock:
            return self._available(gateway_id, self.clock())

    def next_candidate(self, excluding: Iterable[str] = ()) -> Optional[str]:
        """
        First gateway in priority order that is available and not excluded.

        Returns None when every gateway is exhausted.
        """
        excluded = set(excluding)
        with self._lock:
            now = self.clock()
            for gateway_id in self.priority:
                if gateway_id in excluded:
                    continue
                if self._available(gateway_id, now):
                    return gateway_id
        return None

    def mark_unavailable(self, gateway_id: str, seconds: Optional[float] = None) -> bool:
        """
        Take a gateway out of rotation.

        An existing later deadline is kept, so concurrent callers can only
        extend the cool-down. Returns True if the deadline moved.
        """
        seconds = self.cooldown_seconds if seconds is None else seconds
        with self._lock:
            until = self.clock() + seconds
            current = self._unavailable_until.get(gateway_id)
            if current is not None and current >= until:
                return False
            self._unavailable_until[gateway_id] = until
            self._failures.pop(gateway_id, None)

        logger.warning(
            f"Gateway {gateway_id} marked unavailable for {seconds}s",
            extra={'gateway': gateway_id, 'cooldown_seconds': seconds}
        )
        return True

    def record_failure(self, gateway_id: str, retryable: bool = True) -> bool:
        """
        Record a failed call. Returns True if the gateway was taken out of rotation.
        """
        if not retryable:
            return self.mark_unavailable(gateway_id)

        with self._lock:
            now = self.clock()
            window = self._failures.setdefault(gateway_id, deque())
            window.append(now)
            while window and now - window[0] > self.failure_window_seconds:
                window.popleft()
            repeated = len(window) >= self.failure_threshold

        if repeated:
            return self.mark_unavailable(gateway_id)
        return False

    def record_success(self, gateway_id: str):
        with self._lock:
            self._failures.pop(gateway_id, None)

    def snapshot(self) -> Dict[str, Dict]:
        """Availability of every gateway, for diagnostics."""
        with self._lock:
            now = self.clock()
            return {
                gateway_id: {
                    'available': self._available(gateway_id, now),
                    'unavailable_for': max(0.0, self._unavailable_until.get(gateway_id, now) - now),
                    'recent_failures': len(self._failures.get(gateway_id, ())),
                }
                for gateway_id in self.priority
            }


_default_registry = None
_default_registry_lock = threading.Lock()


def build_registry(clock: Callable[[], float] = time.monotonic) -> GatewayRegistry:
    """Build a registry from Django settings."""
    return GatewayRegistry(
        priority=getattr(settings, 'PAYMENT_GATEWAY_PRIORITY', DEFAULT_PRIORITY),
        cooldown_seconds=getattr(settings, 'PAYMENT_GATEWAY_COOLDOWN_SECONDS', DEFAULT_COOLDOWN_SECONDS),
        failure_threshold=getattr(settings, 'PAYMENT_GATEWAY_FAILURE_THRESHOLD', DEFAULT_FAILURE_THRESHOLD),
        failure_window_seconds=getattr(
            settings, 'PAYMENT_GATEWAY_FAILURE_WINDOW_SECONDS', DEFAULT_FAILURE_WINDOW_SECONDS
        ),
        clock=clock,
    )


def get_registry() -> GatewayRegistry:
    """Process-wide registry used by request handlers."""
    global _default_registry
    with _default_registry_lock:
        if _default_registry is None:
            _default_registry = build_registry()
        return _default_registry
