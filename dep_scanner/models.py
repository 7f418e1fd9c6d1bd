# dep_scanner/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Ecosystem(str, Enum):
    """Package namespaces as OSV.dev spells them."""
    NPM = "npm"
    PYPI = "PyPI"
    GO = "Go"
    CRATES_IO = "crates.io"
    MAVEN = "Maven"
    NUGET = "NuGet"
    PACKAGIST = "Packagist"
    RUBYGEMS = "RubyGems"
    HEX = "Hex"

    def __str__(self) -> str:
        return self.value


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __str__(self) -> str:
        return self.value


_SEVERITY_RANK = {
    Severity.UNKNOWN: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


@dataclass(frozen=True)
class ManifestFile:
    path: str
    content: str


@dataclass(frozen=True)
class PackageInfo:
    name: str
    version: str
    ecosystem: Ecosystem
    manifest_file: str

    @property
    def key(self) -> str:
        # Identity used to rejoin query results with packages
        return f"{self.ecosystem.value}:{self.name}@{self.version}"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "ecosystem": self.ecosystem.value,
            "manifestFile": self.manifest_file,
        }


@dataclass(frozen=True)
class Diagnostic:
    kind: str  # parse_error, unsupported_ecosystem, skipped_entry, detail_fetch_failed, unresolved_property
    message: str
    source: Optional[str] = None

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "source": self.source}


@dataclass(frozen=True)
class Reference:
    type: str
    url: str


@dataclass(frozen=True)
class NormalizedVulnerability:
    id: str
    package_name: str
    version: str
    ecosystem: Ecosystem
    severity: Severity
    summary: str
    details: str
    manifest_file: str
    aliases: tuple[str, ...] = ()
    references: tuple[Reference, ...] = ()
    cvss_score: Optional[float] = None
    fixed_versions: tuple[str, ...] = ()

    @property
    def display_id(self) -> str:
        """Prefers a CVE alias over the upstream identifier."""
        for alias in self.aliases:
            if alias.startswith("CVE-"):
                return alias
        return self.id

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "packageName": self.package_name,
            "version": self.version,
            "ecosystem": self.ecosystem.value,
            "severity": self.severity.value,
            "summary": self.summary,
            "details": self.details,
            "aliases": list(self.aliases),
            "references": [{"type": ref.type, "url": ref.url} for ref in self.references],
            "fixedVersions": list(self.fixed_versions),
            "manifestFile": self.manifest_file,
        }
        if self.cvss_score is not None:
            data["cvssScore"] = self.cvss_score
        return data


@dataclass(frozen=True)
class ScanStats:
    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
        }


@dataclass(frozen=True)
class ScanResult:
    success: bool
    vulnerabilities: tuple[NormalizedVulnerability, ...] = ()
    stats: ScanStats = field(default_factory=ScanStats)
    scanned_files: int = 0
    scanned_packages: int = 0
    scan_duration: int = 0  # milliseconds
    error: Optional[str] = None
    diagnostics: tuple[Diagnostic, ...] = ()

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "success": self.success,
            "vulnerabilities": [vuln.to_dict() for vuln in self.vulnerabilities],
            "stats": self.stats.to_dict(),
            "scannedFiles": self.scanned_files,
            "scannedPackages": self.scanned_packages,
            "scanDuration": self.scan_duration,
            "diagnostics": [diag.to_dict() for diag in self.diagnostics],
        }
        if self.error is not None:
            data["error"] = self.error
        return data
