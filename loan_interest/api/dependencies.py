"""
Shared engine dependency
"""

from typing import Optional

from ..engine import InterestEngine


_engine: Optional[InterestEngine] = None


def get_engine() -> InterestEngine:
    """Lazily build the process-wide engine from configuration"""
    global _engine
    if _engine is None:
        _engine = InterestEngine.from_config()
    return _engine
