"""
Cap comparisons where None means unlimited
"""
from typing import Optional


def cap_reached(current: int, cap: Optional[int]) -> bool:
    """True when ``current`` already used up ``cap`` (never for unlimited)"""
    if cap is None:
        return False
    return current >= cap


def exceeds_cap(value: int, cap: Optional[int]) -> bool:
    """True when ``value`` is strictly above ``cap`` (never for unlimited)"""
    if cap is None:
        return False
    return value > cap


def remaining(current: int, cap: Optional[int]) -> Optional[int]:
    """Units left before ``cap`` is reached, None for unlimited"""
    if cap is None:
        return None
    return max(cap - current, 0)
