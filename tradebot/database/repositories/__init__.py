"""Database repositories for data access patterns.

Provides repository pattern for clean separation between
business logic and data access.
"""

from .candle_repository import CandleRepository
from .result_repository import ResultRepository

__all__ = ["CandleRepository", "ResultRepository"]
