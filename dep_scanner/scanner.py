# dep_scanner/scanner.py
import logging
import re
import time
from collections import Counter
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .models import (Diagnostic, ManifestFile, NormalizedVulnerability, PackageInfo, Reference,
                     ScanResult, ScanStats, Severity)
from .osv_scanner import OsvClient, OsvError
from .parser import detect_manifest_type, extract_all_packages
from .severity import RawVulnerability, classify_severity, get_cvss_score
from .utils import format_exception

logger = logging.getLogger(__name__)

SUMMARY_MAX_LENGTH = 200
LARGE_SCAN_THRESHOLD = 500

NO_FILES_ERROR = "No files provided for scanning"
NO_MANIFESTS_ERROR = ("No dependency manifest files found. Please add package.json, requirements.txt, "
                      "go.mod, Cargo.toml, or other dependency files.")

_SENTENCE_BREAK = re.compile(r'[.\n]')


def extract_fixed_versions(ranges: Any) -> List[str]:
    """Collects every ``fixed`` event of the given OSV ranges, in order."""
    fixed_versions = []
    if not isinstance(ranges, list):
        return fixed_versions
    for affected_range in ranges:
        if not isinstance(affected_range, Mapping):
            continue
        events = affected_range.get('events')
        if not isinstance(events, list):
            continue
        for event in events:
            if isinstance(event, Mapping) and event.get('fixed'):
                fixed_versions.append(str(event['fixed']))
    return fixed_versions


def _fixed_versions_for(raw: RawVulnerability, package_name: str) -> tuple[str, ...]:
    fixed_versions: list[str] = []
    affected = raw.get('affected')
    if not isinstance(affected, list):
        return ()
    for entry in affected:
        if not isinstance(entry, Mapping):
            continue
        affected_pkg = entry.get('package')
        if isinstance(affected_pkg, Mapping) and affected_pkg.get('name') == package_name:
            fixed_versions.extend(extract_fixed_versions(entry.get('ranges')))
    # dict keeps first-seen order while dropping duplicates
    return tuple(dict.fromkeys(fixed_versions))


def summarize(raw: RawVulnerability, package_name: str) -> str:
    summary = raw.get('summary')
    if isinstance(summary, str) and summary.strip():
        return summary.strip()

    details = raw.get('details')
    if isinstance(details, str) and details.strip():
        first_sentence = _SENTENCE_BREAK.split(details.strip(), 1)[0].strip()
        if len(first_sentence) > SUMMARY_MAX_LENGTH:
            return first_sentence[:SUMMARY_MAX_LENGTH] + '...'
        if first_sentence:
            return first_sentence

    return f"Security vulnerability in {package_name}"


def _references(raw: RawVulnerability) -> tuple[Reference, ...]:
    references = raw.get('references')
    if not isinstance(references, list):
        return ()
    return tuple(
        Reference(type=str(ref.get('type', '')), url=str(ref['url']))
        for ref in references
        if isinstance(ref, Mapping) and ref.get('url')
    )


def convert_vulnerability(raw: RawVulnerability, pkg: PackageInfo) -> NormalizedVulnerability:
    """Builds the normalized finding for one (package, raw OSV record) pair."""
    aliases = raw.get('aliases')
    details = raw.get('details')
    return NormalizedVulnerability(
        id=raw['id'],
        package_name=pkg.name,
        version=pkg.version,
        ecosystem=pkg.ecosystem,
        severity=classify_severity(raw),
        summary=summarize(raw, pkg.name),
        details=details if isinstance(details, str) else '',
        manifest_file=pkg.manifest_file,
        aliases=tuple(a for a in aliases if isinstance(a, str)) if isinstance(aliases, list) else (),
        references=_references(raw),
        cvss_score=get_cvss_score(raw),
        fixed_versions=_fixed_versions_for(raw, pkg.name),
    )


def calculate_stats(vulnerabilities: Iterable[NormalizedVulnerability]) -> ScanStats:
    counts = Counter(vuln.severity for vuln in vulnerabilities)
    return ScanStats(
        total=sum(counts.values()),
        critical=counts[Severity.CRITICAL],
        high=counts[Severity.HIGH],
        medium=counts[Severity.MEDIUM],
        low=counts[Severity.LOW],
    )


def aggregate(packages: Sequence[PackageInfo],
              vulnerability_map: Mapping[str, Sequence[RawVulnerability]],
              scanned_files: int = 0,
              scan_duration: int = 0,
              diagnostics: Iterable[Diagnostic] = ()) -> ScanResult:
    """
    Joins parsed packages with the records returned for their keys.

    Output follows package order, then upstream record order. A finding is kept
    once per (id, ecosystem, package, version, manifest file).
    """
    vulnerabilities = []
    seen = set()
    for pkg in packages:
        for raw in vulnerability_map.get(pkg.key, ()):
            finding_key = (raw['id'], pkg.ecosystem, pkg.name, pkg.version, pkg.manifest_file)
            if finding_key in seen:
                continue
            seen.add(finding_key)
            vulnerabilities.append(convert_vulnerability(raw, pkg))

    return ScanResult(
        success=True,
        vulnerabilities=tuple(vulnerabilities),
        stats=calculate_stats(vulnerabilities),
        scanned_files=scanned_files,
        scanned_packages=len(packages),
        scan_duration=scan_duration,
        diagnostics=tuple(diagnostics),
    )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def scan_files(files: Optional[Sequence[ManifestFile]], client: OsvClient) -> ScanResult:
    """
    Runs one dependency scan: filter manifests, extract packages, query OSV,
    aggregate. Upstream failures come back as ``success=False`` with the message
    in ``error``; nothing is raised for them.
    """
    start = time.monotonic()
    logger.info("Starting dependency vulnerability scan...")

    if not files:
        logger.error(NO_FILES_ERROR)
        return ScanResult(success=False, error=NO_FILES_ERROR)

    manifest_files = [f for f in files if detect_manifest_type(f.path) is not None]
    if not manifest_files:
        logger.info("No dependency manifest files found")
        return ScanResult(success=False, error=NO_MANIFESTS_ERROR)

    logger.info(f"Scanning manifests: {[f.path for f in manifest_files]}")
    diagnostics: List[Diagnostic] = []
    packages = extract_all_packages(manifest_files, diagnostics)
    logger.info(f"Extracted {len(packages)} packages")

    if not packages:
        return ScanResult(
            success=True,
            scanned_files=len(manifest_files),
            scan_duration=_elapsed_ms(start),
            diagnostics=tuple(diagnostics),
        )

    ecosystem_counts = Counter(pkg.ecosystem.value for pkg in packages)
    logger.info(f"Packages by ecosystem: {dict(ecosystem_counts)}")
    if len(packages) > LARGE_SCAN_THRESHOLD:
        logger.warning(f"Large number of packages ({len(packages)}), scan may take longer")

    try:
        vulnerability_map = client.query_packages(packages, diagnostics)
    except OsvError as e:
        logger.error(f"Dependency scan failed: {format_exception(e)}")
        return ScanResult(
            success=False,
            scanned_files=len(manifest_files),
            scanned_packages=len(packages),
            scan_duration=_elapsed_ms(start),
            error=str(e) or "Unknown error occurred during vulnerability scan",
            diagnostics=tuple(diagnostics),
        )

    result = aggregate(packages, vulnerability_map, scanned_files=len(manifest_files),
                       scan_duration=_elapsed_ms(start), diagnostics=diagnostics)
    stats = result.stats
    logger.info(f"Scan complete: {result.scanned_files} files, {result.scanned_packages} packages, "
                f"{stats.total} vulnerabilities (critical={stats.critical}, high={stats.high}, "
                f"medium={stats.medium}, low={stats.low}) in {result.scan_duration / 1000:.2f}s")
    return result
