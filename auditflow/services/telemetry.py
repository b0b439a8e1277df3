from __future__ import annotations

from collections import defaultdict


_counters: dict[str, int] = defaultdict(int)


def increment_counter(name: str, value: int = 1) -> None:
    # In-process counters for dispatch/retry visibility on the health endpoint.
    _counters[name] += value


def get_counter(name: str) -> int:
    return int(_counters.get(name, 0))


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset_counters() -> None:
    # Clear counters for deterministic tests.
    _counters.clear()
