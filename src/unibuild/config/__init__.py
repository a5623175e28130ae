"""Configuration parsing modules for unibuild."""

from .architectures import (
    Architecture,
    default_archs,
    exec_arch_for,
    is_default_archs,
    uses_bitcode,
)
from .project_config import (
    PROJECT_FILE_NAME,
    ConfigurationError,
    ProjectConfig,
    VendorLibrary,
    find_project_file,
)

__all__ = [
    "Architecture",
    "ConfigurationError",
    "PROJECT_FILE_NAME",
    "ProjectConfig",
    "VendorLibrary",
    "default_archs",
    "exec_arch_for",
    "find_project_file",
    "is_default_archs",
    "uses_bitcode",
]
