"""Database operation mixins for PackageDatabase.

Each mixin provides a group of related database operations:
- PackagesMixin: Host and container package rows (replace, reconcile, queries)
- HistoryMixin: Image rebuild history
"""

from .packages import PackagesMixin
from .history import HistoryMixin

__all__ = [
    'PackagesMixin',
    'HistoryMixin',
]
