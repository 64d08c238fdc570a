"""Access code allocation.

Codes are drawn uniformly at random from a fixed inclusive range and
re-rolled while the candidate is held by a live session. Random attempts
are bounded; once they run out the generator falls back to enumerating the
free codes so a nearly full range still allocates, and a completely full
range raises :class:`CapacityExhaustedError` instead of spinning.

Callers must hold the registry lock across ``allocate()`` and the following
``put()`` for the returned code to still be free at insertion time.
"""
import logging
import random
from typing import Optional

from .errors import CapacityExhaustedError
from .registry import SessionRegistry
from .schemas import CODE_MAX, CODE_MIN

logger = logging.getLogger(__name__)


class CodeGenerator:
    """Allocates codes unique among the sessions held by a registry.

    Args:
        registry:            Registry whose live codes must be avoided.
        code_min:            Lowest code, inclusive.
        code_max:            Highest code, inclusive.
        max_random_attempts: Random draws before falling back to a scan.
        rng:                 Random source; a fresh ``random.Random`` if omitted.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        code_min: int = CODE_MIN,
        code_max: int = CODE_MAX,
        max_random_attempts: int = 64,
        rng: Optional[random.Random] = None,
    ) -> None:
        if code_min < 1 or code_max < code_min:
            raise ValueError(f"Invalid code range {code_min}..{code_max}")
        self._registry = registry
        self._code_min = code_min
        self._code_max = code_max
        self._max_random_attempts = max(0, max_random_attempts)
        self._rng = rng or random.Random()

    @property
    def capacity(self) -> int:
        return self._code_max - self._code_min + 1

    def allocate(self) -> int:
        """Return a code not currently held by the registry.

        Raises:
            CapacityExhaustedError: If every code in the range is live.
        """
        for _ in range(self._max_random_attempts):
            code = self._rng.randint(self._code_min, self._code_max)
            if not self._registry.contains(code):
                return code

        live = self._registry.codes()
        if len(live) >= self.capacity:
            logger.error("Code space exhausted: %d live sessions", len(live))
            raise CapacityExhaustedError()

        free = [c for c in range(self._code_min, self._code_max + 1) if c not in live]
        if not free:
            raise CapacityExhaustedError()
        logger.warning(
            "Random code allocation failed %d times; picked from %d free codes",
            self._max_random_attempts,
            len(free),
        )
        return self._rng.choice(free)
