"""
Package manager backends.

PackageBackend is what the transaction coordinator and the system service
talk to; AptBackend drives apt-get/apt-cache/rpm on the host.
ContainerBackend does the same inside distrobox containers.

All commands run with LC_ALL=C so that the classifier sees untranslated
apt messages.
"""

import logging
import os
import re
import subprocess
from typing import Dict, Iterable, List, Optional

from .errors import BackendError
from .models import Operation, Package

logger = logging.getLogger(__name__)

# rpm -qa output: one "name version-release" pair per line
RPM_QUERYFORMAT = '%{NAME} %{VERSION}-%{RELEASE}\\n'

# Epoch prefix ("1:") and ALT build time suffix ("@1700000000")
_EPOCH = re.compile(r'^\d+:')
_BUILDTIME = re.compile(r'@\d+$')


def _command_env() -> Dict[str, str]:
    env = dict(os.environ)
    env['LC_ALL'] = 'C'
    return env


def run_command(args: List[str], check: bool = True) -> subprocess.CompletedProcess:
    """Run a command with stderr merged into stdout.

    Raises:
        BackendError: if the command cannot be started, or exits non-zero
                      when check is True
    """
    logger.debug(f"Running: {' '.join(args)}")
    try:
        result = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                text=True, env=_command_env())
    except OSError as e:
        raise BackendError(f"Failed to run {args[0]}: {e}") from e

    if check and result.returncode != 0:
        raise BackendError(
            f"{' '.join(args)} exited with code {result.returncode}",
            output=result.stdout,
        )
    return result


def normalize_version(version: str) -> str:
    """Drop the epoch and ALT build time from an apt version string."""
    version = _EPOCH.sub('', version.strip())
    return _BUILDTIME.sub('', version)


def parse_dependency_names(value: str) -> List[str]:
    """Names of a Depends/Provides field, without version constraints.

    Only the first alternative of ``a | b`` is kept.
    """
    names = []
    for part in value.split(','):
        part = part.split('|')[0].strip()
        if not part:
            continue
        name = part.split()[0]
        if name not in names:
            names.append(name)
    return names


def parse_dumpavail(lines: Iterable[str]) -> List[Package]:
    """Parse ``apt-cache dumpavail`` stanzas into packages.

    Stanzas are separated by blank lines; continuation lines (leading
    whitespace) extend the previous field.
    """
    packages = []
    fields: Dict[str, str] = {}
    current_key: Optional[str] = None

    def flush():
        if fields.get('Package'):
            packages.append(_stanza_to_package(fields))

    for raw in lines:
        line = raw.rstrip('\n')
        if not line.strip():
            flush()
            fields = {}
            current_key = None
            continue

        if line[0].isspace():
            if current_key:
                text = line.strip()
                fields[current_key] += '\n' + ('' if text == '.' else text)
            continue

        key, sep, value = line.partition(':')
        if not sep:
            continue
        current_key = key.strip()
        fields[current_key] = value.strip()

    flush()
    return packages


def _int_field(fields: Dict[str, str], key: str) -> int:
    try:
        return int(fields.get(key, '0') or 0)
    except ValueError:
        return 0


def _stanza_to_package(fields: Dict[str, str]) -> Package:
    return Package(
        name=fields['Package'],
        version=normalize_version(fields.get('Version', '')),
        section=fields.get('Section', ''),
        maintainer=fields.get('Maintainer', ''),
        depends=parse_dependency_names(fields.get('Depends', '')),
        provides=parse_dependency_names(fields.get('Provides', '')),
        size=_int_field(fields, 'Size'),
        installed_size=_int_field(fields, 'Installed-Size'),
        filename=fields.get('Filename', ''),
        description=fields.get('Description', ''),
        changelog=fields.get('Changelog', ''),
    )


def parse_installed(output: str) -> Dict[str, str]:
    """Parse ``rpm -qa --queryformat '%{NAME} %{VERSION}-%{RELEASE}\\n'``."""
    installed = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2:
            installed[parts[0]] = parts[1]
    return installed


class PackageBackend:
    """Interface to the host package manager."""

    def refresh_lists(self):
        """Fetch fresh package lists from the repositories, if supported."""

    def execute_dry_run(self, names: List[str], operation: Operation) -> str:
        """Simulate an operation; returns the raw output for the classifier."""
        raise NotImplementedError

    def execute_real(self, names: List[str], operation: Operation) -> str:
        """Run an operation for real.

        Raises:
            BackendError: on failure, with the raw output attached
        """
        raise NotImplementedError

    def get_installed_snapshot(self) -> Dict[str, str]:
        """Installed packages as name -> version, from the system itself."""
        raise NotImplementedError

    def scan_available_packages(self) -> List[Package]:
        """Full metadata scan of every available package."""
        raise NotImplementedError


class AptBackend(PackageBackend):
    """apt-get/apt-cache/rpm on the host."""

    def __init__(self, apt_get: str = 'apt-get', apt_cache: str = 'apt-cache',
                 rpm: str = 'rpm'):
        self.apt_get = apt_get
        self.apt_cache = apt_cache
        self.rpm = rpm

    def execute_dry_run(self, names: List[str], operation: Operation) -> str:
        # apt exits non-zero on E: lines; the classifier handles them
        result = run_command([self.apt_get, '-s', operation.value] + list(names), check=False)
        return result.stdout

    def execute_real(self, names: List[str], operation: Operation) -> str:
        result = run_command([self.apt_get, '-y', operation.value] + list(names))
        return result.stdout

    def refresh_lists(self):
        """apt-get update."""
        run_command([self.apt_get, 'update'])

    def get_installed_snapshot(self) -> Dict[str, str]:
        result = run_command([self.rpm, '-qa', '--queryformat', RPM_QUERYFORMAT])
        return parse_installed(result.stdout)

    def scan_available_packages(self) -> List[Package]:
        result = run_command([self.apt_cache, 'dumpavail'])
        packages = parse_dumpavail(result.stdout.splitlines())
        logger.debug(f"apt-cache dumpavail: {len(packages)} packages")
        return packages


# =============================================================================
# Containers
# =============================================================================

class ContainerBackend:
    """Interface to package managers running inside containers."""

    def list_containers(self) -> List[Dict[str, str]]:
        raise NotImplementedError

    def scan_packages(self, container: str) -> List[Package]:
        """Full scan of a container, with installed flags already set."""
        raise NotImplementedError

    def install(self, container: str, name: str):
        raise NotImplementedError

    def remove(self, container: str, name: str):
        raise NotImplementedError

    def export_app(self, container: str, name: str, delete: bool = False):
        """Export (or un-export) an application to the host."""
        raise NotImplementedError

    def remove_container(self, container: str):
        raise NotImplementedError


class DistroboxBackend(ContainerBackend):
    """distrobox containers running an apt-rpm based distribution."""

    MANAGER = 'apt-get'

    def __init__(self, distrobox: str = 'distrobox'):
        self.distrobox = distrobox

    def _enter(self, container: str, command: List[str], check: bool = True):
        return run_command([self.distrobox, 'enter', container, '--'] + command, check=check)

    def list_containers(self) -> List[Dict[str, str]]:
        """Parse ``distrobox list`` (ID | NAME | STATUS | IMAGE)."""
        result = run_command([self.distrobox, 'list', '--no-color'])
        containers = []
        for line in result.stdout.splitlines()[1:]:
            parts = [p.strip() for p in line.split('|')]
            if len(parts) >= 4 and parts[1]:
                containers.append({
                    'id': parts[0],
                    'name': parts[1],
                    'status': parts[2],
                    'image': parts[3],
                })
        return containers

    def scan_packages(self, container: str) -> List[Package]:
        self._enter(container, ['sudo', 'apt-get', 'update'])
        available = self._enter(container, ['apt-cache', 'dumpavail'])
        installed = parse_installed(
            self._enter(container, ['rpm', '-qa', '--queryformat', RPM_QUERYFORMAT]).stdout
        )
        packages = parse_dumpavail(available.stdout.splitlines())
        for pkg in packages:
            pkg.container = container
            pkg.manager = self.MANAGER
            if pkg.name in installed:
                pkg.installed = True
                pkg.installed_version = installed[pkg.name]
        return packages

    def install(self, container: str, name: str):
        self._enter(container, ['sudo', 'apt-get', 'install', '-y', name])

    def remove(self, container: str, name: str):
        self._enter(container, ['sudo', 'apt-get', 'remove', '-y', name])

    def export_app(self, container: str, name: str, delete: bool = False):
        command = ['distrobox-export', '--app', name]
        if delete:
            command.append('--delete')
        self._enter(container, command)

    def remove_container(self, container: str):
        run_command([self.distrobox, 'rm', '--force', container])
