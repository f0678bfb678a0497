"""Color output support for apm CLI.

Color palette:
  - Red: errors, packages to remove
  - Orange: warnings, hints
  - Green: success, packages to install
  - Blue: packages to upgrade
"""

import os
import sys

# ANSI color codes
_COLORS = {
    'reset': '\033[0m',
    'bold': '\033[1m',
    'dim': '\033[2m',
    'red': '\033[91m',
    'orange': '\033[93m',   # No true orange in ANSI
    'green': '\033[92m',
    'blue': '\033[94m',
}

_colors_enabled = True


def init(nocolor: bool = False):
    """Initialize color support.

    Colors are off with --nocolor, with NO_COLOR set, or when stdout
    is not a terminal.
    """
    global _colors_enabled
    _colors_enabled = not (nocolor or os.environ.get('NO_COLOR') or not sys.stdout.isatty())


def _wrap(text: str, color: str) -> str:
    if not _colors_enabled:
        return text
    return f"{_COLORS[color]}{text}{_COLORS['reset']}"


def error(text: str) -> str:
    return _wrap(text, 'red')


def warning(text: str) -> str:
    return _wrap(text, 'orange')


def success(text: str) -> str:
    return _wrap(text, 'green')


def info(text: str) -> str:
    return _wrap(text, 'blue')


def bold(text: str) -> str:
    return _wrap(text, 'bold')


def dim(text: str) -> str:
    return _wrap(text, 'dim')


# Package lists in confirmation prompts
PACKAGE_LIST_COLORS = {
    'new_installed_packages': success,
    'extra_installed': success,
    'upgraded_packages': info,
    'removed_packages': error,
}
