"""Installation ownership and distribution extraction."""

from jmeter_runner.installation.installer import (
    INVALID_DISTRIBUTION_MESSAGE,
    DistributionInstaller,
    detect_distribution_root,
)
from jmeter_runner.installation.manager import (
    NOT_CONFIGURED_MESSAGE,
    InstallationManager,
    KeyValueStore,
    parse_version,
)

__all__ = [
    "DistributionInstaller",
    "INVALID_DISTRIBUTION_MESSAGE",
    "InstallationManager",
    "KeyValueStore",
    "NOT_CONFIGURED_MESSAGE",
    "detect_distribution_root",
    "parse_version",
]
