# dep_scanner/osv_scanner.py
"""
OSV.dev client: batched package queries plus per-vulnerability detail fetches.

API reference: https://google.github.io/osv.dev/api/
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, List, Optional

import requests

from .config import ScannerConfig
from .models import Diagnostic, PackageInfo
from .utils import add_diagnostic

logger = logging.getLogger(__name__)

RawVulnerability = dict[str, Any]


class OsvError(Exception):
    """Base class for failures talking to OSV.dev."""


class OsvApiError(OsvError):
    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class OsvRateLimitError(OsvApiError):
    """Raised when a batch is still rate limited after its single retry."""


class OsvResponseError(OsvError):
    """Raised when a response body does not follow the documented schema."""


def build_query(pkg: PackageInfo) -> dict:
    return {
        "package": {"ecosystem": pkg.ecosystem.value, "name": pkg.name},
        "version": pkg.version,
    }


def validate_batch_response(body: Any, expected_results: int) -> List[List[RawVulnerability]]:
    """
    Checks a querybatch body and returns the ``vulns`` list of every result entry.

    The body must be ``{"results": [...]}`` positionally aligned with the queries;
    each entry is an object with an optional ``vulns`` list of objects carrying a
    string ``id``.
    """
    if not isinstance(body, dict) or not isinstance(body.get('results'), list):
        raise OsvResponseError("Batch response has no 'results' list")

    results = body['results']
    if len(results) != expected_results:
        raise OsvResponseError(
            f"Batch response has {len(results)} results for {expected_results} queries")

    validated = []
    for index, entry in enumerate(results):
        if not isinstance(entry, dict):
            raise OsvResponseError(f"Batch result {index} is not an object")
        vulns = entry.get('vulns', [])
        if vulns is None:
            vulns = []
        if not isinstance(vulns, list):
            raise OsvResponseError(f"Batch result {index} has a non-list 'vulns'")
        for vuln in vulns:
            if not isinstance(vuln, dict) or not isinstance(vuln.get('id'), str):
                raise OsvResponseError(f"Batch result {index} holds a vulnerability without an id")
        validated.append(vulns)
    return validated


def is_valid_vulnerability(record: Any) -> bool:
    return isinstance(record, dict) and isinstance(record.get('id'), str) and bool(record['id'])


class OsvClient:
    """
    Queries OSV.dev for the vulnerabilities of a list of packages.

    The caller owns the client: build one per application (or per test) and close
    it when done. A ``requests.Session`` is created unless one is passed in.
    """

    def __init__(self, config: Optional[ScannerConfig] = None,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config or ScannerConfig()
        self._owns_session = session is None
        self.session = session if session is not None else requests.Session()
        self._sleep = sleep

    def close(self):
        if self._owns_session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def query_packages(self, packages: Iterable[PackageInfo],
                       diagnostics: Optional[List[Diagnostic]] = None) -> dict[str, List[RawVulnerability]]:
        """
        Returns the vulnerabilities of every affected package keyed by
        ``"ecosystem:name@version"``. Packages without findings are absent.

        Batches run one after another; a batch that is rate limited twice, or that
        fails with any other HTTP error, aborts the whole query.
        """
        unique: dict[str, PackageInfo] = {}
        for pkg in packages:
            unique.setdefault(pkg.key, pkg)
        queued = list(unique.values())

        vulnerability_map: dict[str, List[RawVulnerability]] = {}
        if not queued:
            return vulnerability_map

        batch_size = self.config.batch_size
        batches = [queued[i:i + batch_size] for i in range(0, len(queued), batch_size)]
        logger.info(f"Querying OSV for {len(queued)} packages in {len(batches)} batch(es)")

        for batch_index, batch in enumerate(batches, 1):
            logger.info(f"Processing batch {batch_index}/{len(batches)} ({len(batch)} packages)")
            results = self._query_batch(batch)
            self._collect_batch(batch, results, vulnerability_map, diagnostics)

        return vulnerability_map

    def _post_batch(self, request_body: dict) -> requests.Response:
        url = self.config.osv_batch_url
        try:
            return self.session.post(url, json=request_body, timeout=self.config.request_timeout)
        except requests.exceptions.RequestException as e:
            raise OsvApiError(f"OSV API request failed: {e}", url=url) from e

    def _query_batch(self, batch: List[PackageInfo]) -> List[List[RawVulnerability]]:
        url = self.config.osv_batch_url
        request_body = {"queries": [build_query(pkg) for pkg in batch]}

        response = self._post_batch(request_body)
        if response.status_code == 429:
            logger.warning(f"Rate limited by OSV, waiting {self.config.rate_limit_delay}s before retry...")
            self._sleep(self.config.rate_limit_delay)
            response = self._post_batch(request_body)
            if response.status_code == 429:
                raise OsvRateLimitError("OSV API failed after retry: 429", status_code=429, url=url)

        if not response.ok:
            raise OsvApiError(f"OSV API request failed: {response.status_code}",
                              status_code=response.status_code, url=url)

        try:
            body = response.json()
        except ValueError as e:
            raise OsvResponseError(f"Error decoding OSV batch response: {e}") from e

        return validate_batch_response(body, len(batch))

    def _collect_batch(self, batch: List[PackageInfo], results: List[List[RawVulnerability]],
                       vulnerability_map: dict[str, List[RawVulnerability]],
                       diagnostics: Optional[List[Diagnostic]]):
        minimal_records: dict[str, RawVulnerability] = {}
        for vulns in results:
            for vuln in vulns:
                minimal_records.setdefault(vuln['id'], vuln)

        if not minimal_records:
            return

        logger.info(f"Found {len(minimal_records)} unique OSV IDs in batch, fetching details...")
        details = self._fetch_all_details(list(minimal_records), diagnostics)

        for pkg, vulns in zip(batch, results):
            if not vulns:
                continue
            logger.debug(f"Found {len(vulns)} vulnerabilities for {pkg.key}")
            vulnerability_map[pkg.key] = [
                details.get(vuln['id']) or minimal_records[vuln['id']] for vuln in vulns
            ]

    def _fetch_all_details(self, vuln_ids: List[str],
                           diagnostics: Optional[List[Diagnostic]]) -> dict[str, RawVulnerability]:
        # Fan out, then wait for every fetch to settle
        workers = max(1, min(self.config.max_workers, len(vuln_ids)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            fetched = list(executor.map(self.get_vuln_details, vuln_ids))

        details = {}
        for vuln_id, record in zip(vuln_ids, fetched):
            if record is None:
                add_diagnostic(diagnostics, "detail_fetch_failed",
                               f"Failed to fetch details for {vuln_id}, using batch record", log=logger)
            else:
                details[vuln_id] = record
        return details

    def get_vuln_details(self, vuln_id: str) -> RawVulnerability | None:
        """
        Fetches the full record for one OSV identifier.
        Returns None on any error so the caller can fall back to the batch record.
        """
        if not vuln_id:
            return None

        details_url = self.config.osv_vuln_url + vuln_id
        try:
            response = self.session.get(details_url, timeout=self.config.request_timeout)
            if not response.ok:
                logger.error(f"Failed to fetch OSV details for {vuln_id}: {response.status_code}")
                return None
            record = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching OSV details for {vuln_id}: {e}")
            return None
        except ValueError as e:
            logger.error(f"Error decoding OSV details JSON for {vuln_id}: {e}")
            return None

        if not is_valid_vulnerability(record):
            logger.error(f"OSV details for {vuln_id} do not look like a vulnerability record")
            return None
        return record
