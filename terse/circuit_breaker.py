"""Per-path circuit breaker.

Tracks the recent success/failure history of the fast and smart paths
independently and disables a path for a cooldown period once its failure
ratio over a full window exceeds the threshold:
- Persisted to `<terse home>/circuit-breaker.json`
- Unreadable state counts as closed (all paths allowed)
- Writes are atomic and best-effort
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

__all__ = [
    "PathId",
    "PathState",
    "BreakerStatus",
    "CircuitBreaker",
    "DEFAULT_WINDOW",
    "DEFAULT_THRESHOLD",
    "DEFAULT_COOLDOWN_SECS",
]

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 10
DEFAULT_THRESHOLD = 0.2
DEFAULT_COOLDOWN_SECS = 600

STATE_FILE_NAME = "circuit-breaker.json"


class PathId(Enum):
    """Optimization paths tracked by the breaker."""

    FAST = "fast_path"
    SMART = "smart_path"

    @classmethod
    def parse(cls, value: str) -> "PathId":
        """Accept `fast`, `smart`, `fast_path` or `smart_path`."""
        normalized = value.strip().lower().replace("-", "_")
        if not normalized.endswith("_path"):
            normalized += "_path"
        return cls(normalized)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PathState:
    """Persisted history of one path.

    Attributes:
        results: Recent outcomes, oldest first (True = success).
        tripped_until: End of the cooldown when tripped.
        bypassed: Attempts skipped while the path was open.
    """

    results: List[bool] = field(default_factory=list)
    tripped_until: Optional[datetime] = None
    bypassed: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "results": list(self.results),
            "tripped_until": self.tripped_until.isoformat() if self.tripped_until else None,
            "bypassed": self.bypassed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PathState":
        """Create from dictionary, tolerating missing or malformed fields."""
        results = [bool(r) for r in data.get("results", []) if isinstance(r, bool)]

        tripped_until = data.get("tripped_until")
        if isinstance(tripped_until, str):
            tripped_until = datetime.fromisoformat(tripped_until)
            if tripped_until.tzinfo is None:
                tripped_until = tripped_until.replace(tzinfo=timezone.utc)
        else:
            tripped_until = None

        bypassed = data.get("bypassed", 0)
        return cls(
            results=results,
            tripped_until=tripped_until,
            bypassed=bypassed if isinstance(bypassed, int) else 0,
        )


@dataclass
class BreakerStatus:
    """Diagnostic view of one path."""

    allowed: bool
    tripped_until: Optional[datetime]
    recent_failures: int
    recent_total: int
    bypassed: int

    @property
    def failure_rate(self) -> float:
        if self.recent_total == 0:
            return 0.0
        return self.recent_failures / self.recent_total


class CircuitBreaker:
    """Windowed failure-ratio breaker for the fast and smart paths.

    Example:
        >>> breaker = CircuitBreaker.load(Path("~/.terse/circuit-breaker.json"))
        >>> if breaker.is_allowed(PathId.SMART):
        ...     breaker.record(PathId.SMART, success=False)
    """

    def __init__(
        self,
        state_path: Optional[Union[str, Path]] = None,
        window: int = DEFAULT_WINDOW,
        threshold: float = DEFAULT_THRESHOLD,
        cooldown_secs: int = DEFAULT_COOLDOWN_SECS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize an empty (closed) breaker.

        Args:
            state_path: JSON state file; None keeps state in memory only.
            window: Number of recent outcomes considered.
            threshold: Failure ratio that must be exceeded to trip.
            cooldown_secs: How long a tripped path stays disabled.
            clock: Returns the current UTC time (injectable for tests).
        """
        self.state_path = Path(state_path) if state_path else None
        self.window = max(1, int(window))
        self.threshold = threshold
        self.cooldown = timedelta(seconds=cooldown_secs)
        self._clock = clock
        self.states: Dict[PathId, PathState] = {path: PathState() for path in PathId}

    @classmethod
    def load(cls, state_path: Union[str, Path], **kwargs) -> "CircuitBreaker":
        """Load persisted state; unreadable or malformed state means closed.

        Args:
            state_path: JSON state file.
            **kwargs: Passed to the constructor (window, threshold, ...).

        Returns:
            CircuitBreaker with the loaded state.
        """
        breaker = cls(state_path, **kwargs)
        path = breaker.state_path
        if path is None or not path.exists():
            return breaker

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("state root is not an object")
            for path_id in PathId:
                entry = data.get(path_id.value)
                if isinstance(entry, dict):
                    breaker.states[path_id] = PathState.from_dict(entry)
        except (OSError, ValueError, TypeError) as e:
            # json.JSONDecodeError is a ValueError
            logger.debug("ignoring unreadable breaker state %s: %s", path, e)
            breaker.states = {path_id: PathState() for path_id in PathId}

        return breaker

    @classmethod
    def from_config(cls, config, state_path: Union[str, Path]) -> "CircuitBreaker":
        """Load with window/threshold/cooldown from a TerseConfig."""
        router = config.router
        return cls.load(
            state_path,
            window=router.circuit_breaker_window,
            threshold=router.circuit_breaker_threshold,
            cooldown_secs=router.circuit_breaker_cooldown_secs,
        )

    def is_allowed(self, path: PathId) -> bool:
        """False only while the path's cooldown has not yet expired."""
        tripped_until = self.states[path].tripped_until
        return tripped_until is None or self._clock() >= tripped_until

    def record(self, path: PathId, success: bool) -> None:
        """Record an outcome and trip the path if the window warrants it."""
        state = self.states[path]
        now = self._clock()

        if state.tripped_until is not None and now >= state.tripped_until:
            state.tripped_until = None
            state.results.clear()

        state.results.append(success)
        if len(state.results) > self.window:
            del state.results[: len(state.results) - self.window]

        if len(state.results) >= self.window:
            failures = sum(1 for ok in state.results if not ok)
            if failures / len(state.results) > self.threshold:
                state.tripped_until = now + self.cooldown
                logger.info(
                    "%s tripped: %d/%d failures, disabled until %s",
                    path.value,
                    failures,
                    len(state.results),
                    state.tripped_until.isoformat(),
                )

        self.save()

    def record_success(self, path: PathId) -> None:
        self.record(path, True)

    def record_failure(self, path: PathId) -> None:
        self.record(path, False)

    def record_bypass(self, path: PathId) -> None:
        """Count an attempt skipped because the path was open."""
        self.states[path].bypassed += 1
        self.save()

    def status(self, path: PathId) -> BreakerStatus:
        state = self.states[path]
        return BreakerStatus(
            allowed=self.is_allowed(path),
            tripped_until=state.tripped_until,
            recent_failures=sum(1 for ok in state.results if not ok),
            recent_total=len(state.results),
            bypassed=state.bypassed,
        )

    def reset(self, path: Optional[PathId] = None) -> None:
        """Close one path (or all when path is None) and clear its history."""
        targets = [path] if path is not None else list(PathId)
        for target in targets:
            self.states[target] = PathState()
        self.save()

    def to_dict(self) -> dict:
        return {path.value: self.states[path].to_dict() for path in PathId}

    def save(self) -> bool:
        """Atomically persist state.

        Returns:
            True on success, False on any failure (never raises).
        """
        if self.state_path is None:
            return False

        tmp_name = None
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.state_path.parent, prefix=".breaker-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
            os.replace(tmp_name, self.state_path)
            return True
        except OSError as e:
            logger.debug("could not save breaker state %s: %s", self.state_path, e)
            if tmp_name and os.path.exists(tmp_name):
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            return False
