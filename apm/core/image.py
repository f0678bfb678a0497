"""Image building for atomic hosts.

The desired configuration is rendered to a Containerfile, built with
podman (or docker), and the host is switched to the result with bootc.
"""

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any, Dict

from .desired import DesiredConfig, DesiredConfigStore
from .errors import BackendError

logger = logging.getLogger(__name__)

# Local tag of the image built from the Containerfile
LOCAL_IMAGE_TAG = 'localhost/apm-os:latest'


@dataclass
class ContainerRuntime:
    """Detected container runtime."""
    name: str           # 'docker' or 'podman'
    path: str           # /usr/bin/podman
    version: str        # 4.9.3


def detect_runtime(preferred: str = None) -> ContainerRuntime:
    """Detect available container runtime.

    Args:
        preferred: 'docker', 'podman', or None (auto-detect, prefers podman)

    Raises:
        BackendError if no runtime found
    """
    runtimes = [preferred] if preferred else ['podman', 'docker']

    for rt in runtimes:
        path = shutil.which(rt)
        if not path:
            continue
        try:
            result = subprocess.run([path, '--version'], capture_output=True,
                                    text=True, timeout=5)
            # "podman version 4.9.3" / "Docker version 24.0.1, build ..."
            version = result.stdout.strip().split()[-1] if result.returncode == 0 else 'unknown'
        except (subprocess.TimeoutExpired, OSError):
            version = 'unknown'
        return ContainerRuntime(name=rt, path=path, version=version.rstrip(','))

    raise BackendError("No container runtime found. Install podman or docker.")


class ImageBuilder:
    """Builds the image of a desired configuration and boots into it."""

    def rebuild_and_switch(self, config: DesiredConfig) -> str:
        """Build the already generated image definition and boot into it.

        Returns:
            Name of the image the host will boot
        """
        raise NotImplementedError

    def status(self) -> Dict[str, Any]:
        raise NotImplementedError


class BootcImageBuilder(ImageBuilder):
    """podman/docker build followed by ``bootc switch``."""

    def __init__(self, store: DesiredConfigStore = None, bootc: str = 'bootc',
                 runtime: ContainerRuntime = None, tag: str = LOCAL_IMAGE_TAG):
        self.store = store or DesiredConfigStore()
        self.bootc = bootc
        self._runtime = runtime
        self.tag = tag

    @property
    def runtime(self) -> ContainerRuntime:
        if self._runtime is None:
            self._runtime = detect_runtime()
            logger.debug(f"Using {self._runtime.name} {self._runtime.version}")
        return self._runtime

    def _run(self, args):
        logger.debug(f"Running: {' '.join(args)}")
        try:
            result = subprocess.run(args, stdout=subprocess.PIPE,
                                    stderr=subprocess.STDOUT, text=True)
        except OSError as e:
            raise BackendError(f"Failed to run {args[0]}: {e}") from e
        if result.returncode != 0:
            raise BackendError(f"{' '.join(args)} exited with code {result.returncode}",
                               output=result.stdout)
        return result.stdout

    def rebuild_and_switch(self, config: DesiredConfig) -> str:
        containerfile = self.store.containerfile
        if not containerfile.exists():
            self.store.generate_containerfile(config)
        context_dir = containerfile.parent

        self._run([self.runtime.path, 'build', '--pull=newer', '-t', self.tag,
                   '-f', str(containerfile), str(context_dir)])
        self._run([self.bootc, 'switch', '--transport', 'containers-storage', self.tag])
        logger.info(f"Host switched to {self.tag} (from {config.image})")
        return self.tag

    def status(self) -> Dict[str, Any]:
        output = self._run([self.bootc, 'status', '--format', 'json'])
        try:
            return json.loads(output)
        except ValueError as e:
            raise BackendError(f"Unexpected bootc status output: {e}", output=output) from e
