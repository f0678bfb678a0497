"""
Desired state of the system image.

The image configuration is a small YAML file:

    image: ghcr.io/alt-atomic/onyx:latest
    packages:
      install: [htop, mc]
      remove: [nano]
    commands:
      - systemctl enable sshd

A package name appears in at most one of install/remove. The Containerfile
built from it is what the image builder consumes.
"""

import logging
import os
import shlex
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .config import DEFAULT_IMAGE, get_containerfile_path, get_image_file
from .errors import ApmError
from .models import Operation

logger = logging.getLogger(__name__)


class DesiredConfigError(ApmError):
    """The image configuration file cannot be read or written."""


@dataclass
class DesiredConfig:
    """Declarative package lists of the system image."""
    image: str = DEFAULT_IMAGE
    install: List[str] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)
    commands: List[str] = field(default_factory=list)

    def add_install(self, name: str) -> bool:
        """Record that the image must contain a package.

        Returns:
            True if the configuration changed
        """
        if name in self.install:
            return False
        if name in self.remove:
            self.remove.remove(name)
        self.install.append(name)
        return True

    def add_remove(self, name: str) -> bool:
        """Record that the image must not contain a package.

        Returns:
            True if the configuration changed
        """
        if name in self.remove:
            return False
        if name in self.install:
            self.install.remove(name)
        self.remove.append(name)
        return True

    def add(self, name: str, operation: Operation) -> bool:
        if operation == Operation.INSTALL:
            return self.add_install(name)
        return self.add_remove(name)

    def is_recorded(self, name: str, operation: Operation) -> bool:
        if operation == Operation.INSTALL:
            return name in self.install
        return name in self.remove

    def to_dict(self) -> Dict[str, Any]:
        return {
            'image': self.image,
            'packages': {
                'install': list(self.install),
                'remove': list(self.remove),
            },
            'commands': list(self.commands),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DesiredConfig':
        packages = data.get('packages') or {}
        config = cls(image=data.get('image') or DEFAULT_IMAGE,
                     commands=[str(c) for c in data.get('commands') or []])
        # Go through add_* so a name listed twice keeps the invariant
        for name in packages.get('install') or []:
            config.add_install(str(name))
        for name in packages.get('remove') or []:
            config.add_remove(str(name))
        return config


def render_containerfile(config: DesiredConfig) -> str:
    """Build the Containerfile text for a configuration."""
    lines = [f"FROM {config.image}", ""]
    if config.install or config.remove:
        lines.append("RUN apt-get update")
    if config.install:
        names = ' '.join(shlex.quote(n) for n in config.install)
        lines.append(f"RUN apt-get -y install {names}")
    if config.remove:
        names = ' '.join(shlex.quote(n) for n in config.remove)
        lines.append(f"RUN apt-get -y remove {names}")
    for command in config.commands:
        lines.append(f"RUN {command}")
    return '\n'.join(lines) + '\n'


def _atomic_write(path: Path, text: str):
    """Write via a temp file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, 'w') as f:
            f.write(text)
        os.replace(tmp, path)
    except OSError:
        Path(tmp).unlink(missing_ok=True)
        raise


class DesiredConfigStore:
    """Load/save the image configuration and regenerate the Containerfile."""

    def __init__(self, path: Path = None, containerfile: Path = None):
        self.path = Path(path) if path else get_image_file()
        self.containerfile = Path(containerfile) if containerfile else get_containerfile_path()

    def load(self) -> DesiredConfig:
        """Read the configuration; a missing file gives the default one."""
        if not self.path.exists():
            logger.debug(f"{self.path} not found, using default image configuration")
            return DesiredConfig()
        try:
            with open(self.path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise DesiredConfigError(f"Failed to read {self.path}: {e}") from e

        if data is None:
            return DesiredConfig()
        if not isinstance(data, dict):
            raise DesiredConfigError(f"{self.path}: expected a mapping at top level")
        return DesiredConfig.from_dict(data)

    def save(self, config: DesiredConfig):
        text = yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False)
        try:
            _atomic_write(self.path, text)
        except OSError as e:
            raise DesiredConfigError(f"Failed to write {self.path}: {e}") from e
        logger.debug(f"Saved image configuration to {self.path}")

    def generate_containerfile(self, config: DesiredConfig) -> Path:
        """Regenerate the image definition from a configuration.

        Returns:
            Path of the written Containerfile
        """
        try:
            _atomic_write(self.containerfile, render_containerfile(config))
        except OSError as e:
            raise DesiredConfigError(f"Failed to write {self.containerfile}: {e}") from e
        logger.debug(f"Generated {self.containerfile}")
        return self.containerfile
