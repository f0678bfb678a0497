"""Data model shared by the cache, the classifier and the coordinator."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Reserved separator for depends/provides lists stored as a single column
LIST_SEPARATOR = ","


def join_list(items: List[str]) -> str:
    """Join a name list into its stored form.

    Raises:
        ValueError: if an element contains the separator
    """
    for item in items:
        if LIST_SEPARATOR in item:
            raise ValueError(
                f"List element {item!r} contains the reserved separator "
                f"{LIST_SEPARATOR!r}"
            )
    return LIST_SEPARATOR.join(items)


def split_list(value: Optional[str]) -> List[str]:
    """Split a stored list back into names. Empty or NULL gives []."""
    if not value:
        return []
    return value.split(LIST_SEPARATOR)


def wrap_token(value: str) -> str:
    """Wrap a token with separators for exact-membership matching."""
    return f"{LIST_SEPARATOR}{value}{LIST_SEPARATOR}"


def format_size(size_bytes: int) -> str:
    """Format size in human readable form."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


class Operation(Enum):
    """Kind of package operation."""
    INSTALL = "install"
    REMOVE = "remove"


@dataclass(frozen=True)
class Scope:
    """Namespace a package row belongs to: the host or one container."""
    container: Optional[str] = None

    @classmethod
    def host(cls) -> 'Scope':
        return cls()

    @classmethod
    def for_container(cls, name: str) -> 'Scope':
        name = (name or "").strip()
        if not name:
            raise ValueError("The container name cannot be empty")
        return cls(container=name)

    @property
    def is_host(self) -> bool:
        return self.container is None

    def __str__(self):
        return "host" if self.is_host else f"container:{self.container}"


@dataclass
class Package:
    """One row of cached package metadata."""
    name: str
    version: str = ""
    section: str = ""
    maintainer: str = ""
    installed_version: str = ""
    depends: List[str] = field(default_factory=list)
    provides: List[str] = field(default_factory=list)
    size: int = 0
    installed_size: int = 0
    filename: str = ""
    description: str = ""
    changelog: str = ""
    installed: bool = False
    # Container scope only
    container: str = ""
    manager: str = ""
    exporting: bool = False

    def to_dict(self, human_sizes: bool = True) -> Dict[str, Any]:
        """Serialize for a Response payload (camelCase keys)."""
        data = {
            'name': self.name,
            'section': self.section,
            'installedSize': format_size(self.installed_size) if human_sizes else self.installed_size,
            'maintainer': self.maintainer,
            'version': self.version,
            'versionInstalled': self.installed_version,
            'depends': list(self.depends),
            'providers': list(self.provides),
            'size': format_size(self.size) if human_sizes else self.size,
            'filename': self.filename,
            'description': self.description,
            'installed': self.installed,
        }
        if self.container:
            data['container'] = self.container
            data['manager'] = self.manager
            data['exporting'] = self.exporting
        return data


@dataclass
class DryRunOutcome:
    """Result of classifying one simulated (or real) apt run."""
    new_installed_count: int = 0
    upgraded_count: int = 0
    removed_count: int = 0
    not_upgraded_count: int = 0
    new_installed_packages: List[str] = field(default_factory=list)
    upgraded_packages: List[str] = field(default_factory=list)
    removed_packages: List[str] = field(default_factory=list)
    extra_installed: List[str] = field(default_factory=list)
    kept_back: List[str] = field(default_factory=list)
    # ClassifiedPackageError / UnclassifiedError, in encounter order
    errors: List[Exception] = field(default_factory=list)
    # Lines that carried no known meaning and were not errors
    notes: List[str] = field(default_factory=list)

    def has_changes(self) -> bool:
        """True if the run would install, upgrade or remove anything."""
        return bool(self.new_installed_count or self.upgraded_count
                    or self.removed_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'newInstalledCount': self.new_installed_count,
            'upgradedCount': self.upgraded_count,
            'removedCount': self.removed_count,
            'notUpgradedCount': self.not_upgraded_count,
            'newInstalledPackages': list(self.new_installed_packages),
            'upgradedPackages': list(self.upgraded_packages),
            'removedPackages': list(self.removed_packages),
            'extraInstalled': list(self.extra_installed),
            'errors': [error.to_dict() for error in self.errors],
            'notes': list(self.notes),
        }


@dataclass
class ListParams:
    """Parameters of a package list request."""
    sort: str = ""
    order: str = ""
    limit: int = 0
    offset: int = 0
    filter_field: str = ""
    filter_value: str = ""
    force_update: bool = False
    container: str = ""

    def filters(self) -> Dict[str, Any]:
        """The single field filter, when both field and value are given."""
        if self.filter_field.strip() and self.filter_value.strip():
            return {self.filter_field.strip(): self.filter_value.strip()}
        return {}


@dataclass
class Response:
    """Uniform result of every caller-facing operation."""
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: bool = False
    outcome: Optional[Enum] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'data': {'message': self.message, **self.data},
            'error': self.error,
        }
        if self.outcome is not None:
            result['outcome'] = self.outcome.value
        return result


def error_response(message: str, outcome: Enum = None, **data) -> Response:
    """Create an error Response."""
    return Response(message=message, data=data, error=True, outcome=outcome)
