from typing import TypeVar

T = TypeVar("T")


def ifnone(value: T | None, default: T) -> T:
    """``default`` when ``value`` is None; falsy values such as ``0`` or ``""`` are kept."""
    return default if value is None else value
