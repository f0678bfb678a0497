"""
apm - Atomic package manager cache layer

Sits between apt and the declarative image configuration of an
atomic system:
- SQLite cache of package metadata, kept in sync with the installed set
- Simulated install/remove with classified apt diagnostics
- Drift detection between the image configuration and reality
"""

__version__ = "0.3.0"
__author__ = "APM Developers"
