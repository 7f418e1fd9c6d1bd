"""Dependency vulnerability scanning against OSV.dev."""

from .models import (Ecosystem, ManifestFile, NormalizedVulnerability, PackageInfo, ScanResult,
                     ScanStats, Severity)
from .osv_scanner import OsvClient
from .scanner import aggregate, scan_files
from .versions import clean_version

__version__ = "0.1.0"

__all__ = [
    "Ecosystem",
    "ManifestFile",
    "NormalizedVulnerability",
    "OsvClient",
    "PackageInfo",
    "ScanResult",
    "ScanStats",
    "Severity",
    "aggregate",
    "clean_version",
    "scan_files",
]
