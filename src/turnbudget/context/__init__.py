"""History admission: allocator and boundary cache."""

from .allocator import BudgetAllocator
from .boundary import BoundaryCache, CacheState, Clean, Dirty

__all__ = ["BoundaryCache", "BudgetAllocator", "CacheState", "Clean", "Dirty"]
