"""
Target architectures and per-platform defaults.

The compiler worker is a host process; when targeting ARM the worker runs
under an Intel execution architecture that matches the target word size.
"""

from dataclasses import dataclass
from typing import Dict, List


# Default architectures per platform. Objects built for exactly this set may
# live in the shared common cache.
DEFAULT_ARCHS: Dict[str, List[str]] = {
    "iPhoneSimulator": ["x86_64"],
    "iPhoneOS": ["arm64"],
    "WatchSimulator": ["i386"],
    "WatchOS": ["armv7k"],
    "AppleTVSimulator": ["x86_64"],
    "AppleTVOS": ["arm64"],
    "MacOSX": ["x86_64"],
}

BITCODE_PLATFORMS = {"WatchOS"}


def exec_arch_for(name: str) -> str:
    """
    Get the host execution architecture used to run the worker for a target.

    Args:
        name: Target architecture (e.g. 'armv7', 'arm64', 'x86_64')

    Returns:
        Host architecture name
    """
    if name.startswith("arm"):
        return "x86_64" if name == "arm64" else "i386"
    return name


@dataclass(frozen=True)
class Architecture:
    """A target architecture and the host architecture its worker runs as."""

    name: str
    exec_arch: str

    @classmethod
    def from_name(cls, name: str) -> "Architecture":
        """Create an Architecture with the standard execution alias."""
        return cls(name=name, exec_arch=exec_arch_for(name))

    def __str__(self) -> str:
        return self.name


def default_archs(platform: str) -> List[str]:
    """
    Get the default architecture list for a platform.

    Args:
        platform: Platform name (e.g. 'iPhoneSimulator')

    Returns:
        List of architecture names (empty if platform is unknown)
    """
    return list(DEFAULT_ARCHS.get(platform, []))


def is_default_archs(platform: str, archs: List[str]) -> bool:
    """Check if an architecture list equals the platform default."""
    defaults = DEFAULT_ARCHS.get(platform)
    return defaults is not None and list(archs) == defaults


def uses_bitcode(platform: str) -> bool:
    """Check if workers emit bitcode instead of assembly for a platform."""
    return platform in BITCODE_PLATFORMS
