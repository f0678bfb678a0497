"""Core modules for apm"""

from .database import PackageDatabase
from .models import Package, Scope, DryRunOutcome, Response

__all__ = ['PackageDatabase', 'Package', 'Scope', 'DryRunOutcome', 'Response']
