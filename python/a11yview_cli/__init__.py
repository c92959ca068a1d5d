# SPDX-License-Identifier: AGPL-3.0-only
"""Version metadata for the a11yview CLI package."""
from importlib.metadata import PackageNotFoundError, version


def _get_version():
    try:
        return version("a11yview")
    except PackageNotFoundError:
        return "0.0.0-dev"


__version__ = _get_version()
