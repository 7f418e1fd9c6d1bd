# dep_scanner/parser.py
"""
Manifest parsers: turn raw dependency-declaration files into PackageInfo records.

Every parser takes ``(content, manifest_file, diagnostics)`` and never raises on
malformed input; whatever could not be read is logged and, when a diagnostics
list is supplied, recorded there.
"""
import json
import logging
import re
from typing import Callable, Iterable, List, Optional

from packaging.version import InvalidVersion
from packaging.version import parse as parse_version

from .go_parser import extract_go_packages
from .models import Diagnostic, Ecosystem, ManifestFile, PackageInfo
from .utils import add_diagnostic
from .versions import clean_version

logger = logging.getLogger(__name__)

ManifestParser = Callable[[str, str, Optional[List[Diagnostic]]], List[PackageInfo]]

# Checked in order against the lower-cased path
MANIFEST_PATTERNS = [
    (Ecosystem.NPM, re.compile(r'package\.json$')),
    (Ecosystem.PYPI, re.compile(r'requirements\.txt$|pipfile$|pyproject\.toml$')),
    (Ecosystem.GO, re.compile(r'go\.mod$')),
    (Ecosystem.CRATES_IO, re.compile(r'cargo\.toml$')),
    (Ecosystem.MAVEN, re.compile(r'pom\.xml$')),
    (Ecosystem.NUGET, re.compile(r'packages\.config$|\.csproj$')),
    (Ecosystem.PACKAGIST, re.compile(r'composer\.json$')),
    (Ecosystem.RUBYGEMS, re.compile(r'gemfile$')),
    (Ecosystem.HEX, re.compile(r'mix\.exs$|mix\.lock$')),
]

# name==1.2.3, name>=1.2, name > 1.0 ...
REQ_PATTERN = re.compile(r'^([a-zA-Z0-9_.-]+)\s*([=><]+)\s*([0-9.]+)')

CARGO_SECTION_HEADERS = ('[dependencies]', '[dev-dependencies]')
CARGO_SIMPLE_PATTERN = re.compile(r'^([a-zA-Z0-9_-]+)\s*=\s*"([\^~=<>]*[0-9.]+)"')
CARGO_TABLE_PATTERN = re.compile(r'^([a-zA-Z0-9_-]+)\s*=\s*\{.*version\s*=\s*"([\^~=<>]*[0-9.]+)"')

MAVEN_DEPENDENCY_BLOCK = re.compile(r'<dependency>(.*?)</dependency>', re.DOTALL)
MAVEN_PROPERTIES_BLOCK = re.compile(r'<properties>(.*?)</properties>', re.DOTALL)
MAVEN_PROPERTY = re.compile(r'<([A-Za-z0-9_.-]+)>\s*([^<]*?)\s*</\1>')
MAVEN_PROPERTY_REFERENCE = re.compile(r'^\$\{([^}]+)\}$')


def detect_manifest_type(file_path: str) -> Ecosystem | None:
    """Infers the ecosystem from the file name alone. None means 'not a manifest'."""
    file_name = file_path.lower()
    for ecosystem, pattern in MANIFEST_PATTERNS:
        if pattern.search(file_name):
            return ecosystem
    return None


def _make_package(name: str, raw_version: str, ecosystem: Ecosystem, manifest_file: str,
                  diagnostics: Optional[List[Diagnostic]]) -> PackageInfo | None:
    version = clean_version(raw_version)
    if not version:
        add_diagnostic(diagnostics, "skipped_entry",
                       f"No usable version for '{name}' (declared as '{raw_version}')",
                       manifest_file, log=logger, level=logging.DEBUG)
        return None
    return PackageInfo(name=name, version=version, ecosystem=ecosystem, manifest_file=manifest_file)


def extract_npm_packages(content: str, manifest_file: str,
                         diagnostics: Optional[List[Diagnostic]] = None) -> List[PackageInfo]:
    """Reads ``dependencies`` and ``devDependencies`` from package.json content."""
    packages = []
    try:
        package_json = json.loads(content)
    except (ValueError, RecursionError) as e:  # JSONDecodeError, oversized ints, deep nesting
        add_diagnostic(diagnostics, "parse_error", f"Could not decode package.json: {e}",
                       manifest_file, log=logger, level=logging.ERROR)
        return packages

    if not isinstance(package_json, dict):
        add_diagnostic(diagnostics, "parse_error", "package.json is not a JSON object",
                       manifest_file, log=logger, level=logging.ERROR)
        return packages

    for section in ('dependencies', 'devDependencies'):
        entries = package_json.get(section)
        if not isinstance(entries, dict):
            continue
        for name, version in entries.items():
            if not isinstance(version, str):
                continue
            pkg = _make_package(name, version, Ecosystem.NPM, manifest_file, diagnostics)
            if pkg:
                packages.append(pkg)

    logger.debug(f"Parsed {len(packages)} npm packages from {manifest_file}")
    return packages


def extract_python_packages(content: str, manifest_file: str,
                            diagnostics: Optional[List[Diagnostic]] = None) -> List[PackageInfo]:
    """
    Line-oriented requirements scan. Comments, blank lines, URLs, extras and
    environment markers that do not fit ``name<op>version`` are skipped quietly.
    """
    packages = []
    for line_num, line in enumerate(content.splitlines(), 1):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith('#'):
            continue

        match = REQ_PATTERN.match(trimmed)
        if not match:
            continue

        name = match.group(1)
        version_str = match.group(3)
        try:
            parse_version(version_str)
        except InvalidVersion:
            add_diagnostic(diagnostics, "skipped_entry",
                           f"Skipping line {line_num}: invalid version '{version_str}' for package '{name}'",
                           manifest_file, log=logger)
            continue

        pkg = _make_package(name, version_str, Ecosystem.PYPI, manifest_file, diagnostics)
        if pkg:
            packages.append(pkg)

    logger.debug(f"Parsed {len(packages)} PyPI packages from {manifest_file}")
    return packages


def extract_rust_packages(content: str, manifest_file: str,
                          diagnostics: Optional[List[Diagnostic]] = None) -> List[PackageInfo]:
    """Reads ``[dependencies]`` and ``[dev-dependencies]`` tables from Cargo.toml content."""
    packages = []
    in_dependencies = False

    for line in content.splitlines():
        trimmed = line.strip()

        if trimmed.startswith('['):
            in_dependencies = trimmed.split('#', 1)[0].strip() in CARGO_SECTION_HEADERS
            continue
        if not in_dependencies or not trimmed or trimmed.startswith('#'):
            continue

        match = CARGO_SIMPLE_PATTERN.match(trimmed) or CARGO_TABLE_PATTERN.match(trimmed)
        if match:
            pkg = _make_package(match.group(1), match.group(2), Ecosystem.CRATES_IO,
                                manifest_file, diagnostics)
            if pkg:
                packages.append(pkg)

    logger.debug(f"Parsed {len(packages)} crates from {manifest_file}")
    return packages


def _maven_properties(content: str) -> dict[str, str]:
    properties = {}
    for block in MAVEN_PROPERTIES_BLOCK.findall(content):
        for key, value in MAVEN_PROPERTY.findall(block):
            properties[key] = value
    return properties


def _tag_text(block: str, tag: str) -> str | None:
    match = re.search(rf'<{tag}>(.*?)</{tag}>', block, re.DOTALL)
    return match.group(1).strip() if match else None


def extract_maven_packages(content: str, manifest_file: str,
                           diagnostics: Optional[List[Diagnostic]] = None) -> List[PackageInfo]:
    """
    Pattern-based pom.xml scan. Each ``<dependency>`` block is read on its own and
    named ``groupId:artifactId``; ``${property}`` versions are resolved from
    ``<properties>`` when possible.
    """
    packages = []
    properties = _maven_properties(content)

    for block in MAVEN_DEPENDENCY_BLOCK.findall(content):
        group_id = _tag_text(block, 'groupId')
        artifact_id = _tag_text(block, 'artifactId')
        version = _tag_text(block, 'version')

        if not group_id or not artifact_id:
            add_diagnostic(diagnostics, "skipped_entry", "Dependency block without groupId/artifactId",
                           manifest_file, log=logger)
            continue
        name = f"{group_id}:{artifact_id}"
        if not version:
            add_diagnostic(diagnostics, "skipped_entry", f"No version declared for '{name}'",
                           manifest_file, log=logger, level=logging.DEBUG)
            continue

        reference = MAVEN_PROPERTY_REFERENCE.match(version)
        if reference:
            resolved = properties.get(reference.group(1))
            if not resolved or resolved.startswith('${'):
                add_diagnostic(diagnostics, "unresolved_property",
                               f"Cannot resolve version '{version}' for '{name}'",
                               manifest_file, log=logger)
                continue
            version = resolved

        pkg = _make_package(name, version, Ecosystem.MAVEN, manifest_file, diagnostics)
        if pkg:
            packages.append(pkg)

    logger.debug(f"Parsed {len(packages)} Maven artifacts from {manifest_file}")
    return packages


def _unsupported_parser(ecosystem: Ecosystem) -> ManifestParser:
    def parse(content: str, manifest_file: str,
              diagnostics: Optional[List[Diagnostic]] = None) -> List[PackageInfo]:
        add_diagnostic(diagnostics, "unsupported_ecosystem",
                       f"Dependency extraction for {ecosystem.value} manifests is not supported yet",
                       manifest_file, log=logger, level=logging.INFO)
        return []
    return parse


PARSERS: dict[Ecosystem, ManifestParser] = {
    Ecosystem.NPM: extract_npm_packages,
    Ecosystem.PYPI: extract_python_packages,
    Ecosystem.GO: extract_go_packages,
    Ecosystem.CRATES_IO: extract_rust_packages,
    Ecosystem.MAVEN: extract_maven_packages,
    Ecosystem.NUGET: _unsupported_parser(Ecosystem.NUGET),
    Ecosystem.PACKAGIST: _unsupported_parser(Ecosystem.PACKAGIST),
    Ecosystem.RUBYGEMS: _unsupported_parser(Ecosystem.RUBYGEMS),
    Ecosystem.HEX: _unsupported_parser(Ecosystem.HEX),
}


def parse_manifest(ecosystem: Ecosystem, content: str, file_path: str,
                   diagnostics: Optional[List[Diagnostic]] = None) -> List[PackageInfo]:
    """Dispatches to the parser registered for ``ecosystem``."""
    return PARSERS[ecosystem](content, file_path, diagnostics)


def extract_packages_from_manifest(file_path: str, content: str,
                                   diagnostics: Optional[List[Diagnostic]] = None) -> List[PackageInfo]:
    ecosystem = detect_manifest_type(file_path)
    if ecosystem is None:
        return []
    return parse_manifest(ecosystem, content, file_path, diagnostics)


def extract_all_packages(files: Iterable[ManifestFile],
                         diagnostics: Optional[List[Diagnostic]] = None) -> List[PackageInfo]:
    """Concatenates the packages of every manifest, keeping duplicates across files."""
    all_packages = []
    for manifest in files:
        all_packages.extend(extract_packages_from_manifest(manifest.path, manifest.content, diagnostics))
    return all_packages
