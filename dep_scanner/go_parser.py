"""
Go module parser for the dependency scanner.
Extracts required modules from go.mod content.
"""

import logging
import re
from typing import List, Optional

from .models import Diagnostic, Ecosystem, PackageInfo
from .utils import add_diagnostic

logger = logging.getLogger(__name__)

# module/path v1.2.3, optionally prefixed with "require"
REQUIRE_PATTERN = re.compile(r'^(?:require\s+)?([a-zA-Z0-9._/-]+)\s+v([0-9.]+)')
REQUIRE_BLOCK_START = re.compile(r'^require\s*\($')


class GoModParser:
    """Parser for go.mod content."""

    def __init__(self, content: str, manifest_file: str,
                 diagnostics: Optional[List[Diagnostic]] = None):
        self.content = content
        self.manifest_file = manifest_file
        self.dependencies: List[PackageInfo] = []
        self.module_name = ""
        self.go_version = ""
        self.diagnostics = diagnostics

    def parse(self) -> List[PackageInfo]:
        """Walks go.mod line by line, tracking whether we are inside a require block."""
        in_require_block = False

        for line_num, line in enumerate(self.content.splitlines(), 1):
            trimmed = line.strip()

            if REQUIRE_BLOCK_START.match(trimmed):
                in_require_block = True
                continue
            if trimmed == ')':
                in_require_block = False
                continue
            if not trimmed or trimmed.startswith('//'):
                continue

            if not in_require_block:
                if trimmed.startswith('module '):
                    self.module_name = trimmed[len('module '):].strip()
                    continue
                if trimmed.startswith('go '):
                    self.go_version = trimmed[len('go '):].strip()
                    continue
                if not trimmed.startswith('require'):
                    continue

            match = REQUIRE_PATTERN.match(trimmed)
            if match:
                self._add_dependency(match.group(1), match.group(2))
            else:
                add_diagnostic(self.diagnostics, "skipped_entry",
                               f"Unrecognised require line {line_num}: '{trimmed}'",
                               self.manifest_file, log=logger)

        logger.debug(f"Parsed {len(self.dependencies)} requirements from {self.manifest_file} "
                     f"(module '{self.module_name or 'unknown'}', go {self.go_version or 'unknown'})")
        return self.dependencies

    def _add_dependency(self, module_path: str, version: str):
        self.dependencies.append(PackageInfo(
            name=module_path,
            version=version,
            ecosystem=Ecosystem.GO,
            manifest_file=self.manifest_file,
        ))
        logger.debug(f"Added Go dependency: {module_path} {version}")


def extract_go_packages(content: str, manifest_file: str,
                        diagnostics: Optional[List[Diagnostic]] = None) -> List[PackageInfo]:
    """
    Extracts Go module requirements from go.mod content.

    Both the block form (``require ( ... )``) and single-line ``require`` statements
    are recognised; every other line is ignored. Versions lose their leading "v".
    """
    return GoModParser(content, manifest_file, diagnostics).parse()
