"""
Central configuration for apm paths and host mode.

Mode detection:
    1. APM_BASE_DIR environment variable → custom base dir (DEV mode)
    2. Find project root (parent of bin/ where apm is located)
    3. If .apm.local exists in project root → read config from it (DEV mode)
    4. If /usr/bin/apm exists → PROD mode (system installation)
    5. Otherwise → DEV mode (development)

PROD mode: /var/lib/apm/
DEV mode:  /var/lib/apm-dev/

Structure:
    <base_dir>/apm.db           - Package cache database
    /etc/apm/image.yml          - Desired image configuration (PROD)
    /var/Containerfile          - Generated image definition (PROD)

.apm.local format (optional, one setting per line):
    base_dir=/path/to/custom/dir
    image_file=/path/to/image.yml
    atomic=yes
    # Comments start with #
"""

import os
import sys
from pathlib import Path
from typing import Optional

# Config file name
LOCAL_CONFIG_FILE = ".apm.local"

# PROD paths (system-wide, requires root)
PROD_BASE_DIR = Path("/var/lib/apm")
PROD_DB_PATH = PROD_BASE_DIR / "apm.db"
PROD_IMAGE_FILE = Path("/etc/apm/image.yml")
PROD_CONTAINERFILE = Path("/var/Containerfile")

# DEV paths (separate directory, isolated from prod)
DEV_BASE_DIR = Path("/var/lib/apm-dev")

# Presence of bootc means the host boots from an OCI image
BOOTC_BINARY = Path("/usr/bin/bootc")

DEFAULT_IMAGE = "ghcr.io/alt-atomic/onyx:latest"

_TRUE_VALUES = ('1', 'true', 'yes', 'on')

# Cache for detected mode (avoid repeated filesystem checks)
_cached_config: Optional[dict] = None


def _get_project_root() -> Optional[Path]:
    """Find project root by looking at where the script is located.

    Returns:
        Project root path, or None if not in a dev environment
    """
    if sys.argv and sys.argv[0]:
        script_path = Path(sys.argv[0]).resolve()
        if script_path.parent.name == 'bin':
            return script_path.parent.parent
    return None


def _read_local_config(project_root: Path) -> Optional[dict]:
    """Read .apm.local config file if it exists in project root.

    Returns:
        Dict with config values, or None if file doesn't exist
    """
    config_path = project_root / LOCAL_CONFIG_FILE
    if not config_path.exists():
        return None

    config = {}
    try:
        with open(config_path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, value = line.split('=', 1)
                    config[key.strip()] = value.strip()
    except OSError:
        return None

    return config


def _is_system_install() -> bool:
    """Check if apm is installed system-wide."""
    return Path("/usr/bin/apm").exists()


def _dev_config(base_dir: Path, overrides: dict = None) -> dict:
    overrides = overrides or {}
    image_file = overrides.get('image_file')
    atomic = overrides.get('atomic')
    return {
        'base_dir': base_dir,
        'db_path': base_dir / "apm.db",
        'image_file': Path(image_file).expanduser() if image_file else base_dir / "image.yml",
        'containerfile': base_dir / "Containerfile",
        'atomic': atomic.lower() in _TRUE_VALUES if atomic else None,
        'is_dev': True,
    }


def _detect_mode() -> dict:
    """Detect configuration based on environment.

    Returns:
        Dict with 'base_dir', 'db_path', 'image_file', 'containerfile',
        'atomic' and 'is_dev'
    """
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    # 1. Explicit override from the environment
    env_dir = os.environ.get('APM_BASE_DIR')
    if env_dir:
        _cached_config = _dev_config(Path(env_dir).expanduser())
        return _cached_config

    # 2. .apm.local in project root (if running from dev tree)
    project_root = _get_project_root()
    if project_root:
        local_config = _read_local_config(project_root)
        if local_config is not None:
            if 'base_dir' in local_config:
                base_dir = Path(local_config['base_dir']).expanduser()
            else:
                base_dir = DEV_BASE_DIR
            _cached_config = _dev_config(base_dir, local_config)
            return _cached_config

    # 3. System installation
    if _is_system_install():
        _cached_config = {
            'base_dir': PROD_BASE_DIR,
            'db_path': PROD_DB_PATH,
            'image_file': PROD_IMAGE_FILE,
            'containerfile': PROD_CONTAINERFILE,
            'atomic': None,
            'is_dev': False,
        }
        return _cached_config

    # 4. Default to DEV mode
    _cached_config = _dev_config(DEV_BASE_DIR)
    return _cached_config


def reset_cache():
    """Forget the detected mode (used after changing APM_BASE_DIR)."""
    global _cached_config
    _cached_config = None


def is_dev_mode() -> bool:
    """Check if running in dev mode."""
    return _detect_mode()['is_dev']


def get_base_dir() -> Path:
    return _detect_mode()['base_dir']


def get_db_path() -> Path:
    return _detect_mode()['db_path']


def get_image_file() -> Path:
    """Path of the desired image configuration (YAML)."""
    return _detect_mode()['image_file']


def get_containerfile_path() -> Path:
    """Path where the generated image definition is written."""
    return _detect_mode()['containerfile']


def is_atomic() -> bool:
    """Check if the host is an atomic (image based) system.

    An explicit ``atomic=`` setting in .apm.local wins; otherwise the
    presence of bootc decides.
    """
    forced = _detect_mode()['atomic']
    if forced is not None:
        return forced
    return BOOTC_BINARY.exists()
