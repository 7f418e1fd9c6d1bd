# dep_scanner/reporting.py
import html
import json
from typing import Iterable, Optional

from .models import NormalizedVulnerability, ScanResult, Severity


def filter_vulnerabilities(vulnerabilities: Iterable[NormalizedVulnerability],
                           severity_threshold: Optional[str] = None,
                           ignore_ids: Iterable[str] = ()) -> list[NormalizedVulnerability]:
    """
    Drops findings below the threshold and findings whose id or any alias is ignored.
    Matching of ignored ids is case-insensitive.
    """
    ignored = {i.strip().lower() for i in ignore_ids if i and i.strip()}
    min_rank = Severity(severity_threshold.upper()).rank if severity_threshold else None

    kept = []
    for vuln in vulnerabilities:
        if min_rank is not None and vuln.severity.rank < min_rank:
            continue
        ids = {vuln.id.lower(), *(alias.lower() for alias in vuln.aliases)}
        if ids & ignored:
            continue
        kept.append(vuln)
    return kept


def sort_vulnerabilities(vulnerabilities: Iterable[NormalizedVulnerability]) -> list[NormalizedVulnerability]:
    # Most severe first, then by package and id
    return sorted(vulnerabilities,
                  key=lambda v: (-v.severity.rank, v.package_name, v.version, v.id))


def _format_score(vuln: NormalizedVulnerability) -> str:
    return f"{vuln.cvss_score:.1f}" if vuln.cvss_score is not None else "N/A"


def render_text(result: ScanResult, vulnerabilities: list[NormalizedVulnerability]) -> str:
    lines = ["--- Dependency Scan Report ---"]
    if not result.success:
        lines.append(f"Scan failed: {result.error}")
    lines.append(f"Scanned {result.scanned_files} manifest file(s), {result.scanned_packages} package(s) "
                 f"in {result.scan_duration / 1000:.2f}s")
    stats = result.stats
    lines.append(f"Totals: {stats.total} (critical {stats.critical}, high {stats.high}, "
                 f"medium {stats.medium}, low {stats.low})")

    if not vulnerabilities:
        lines.append("No vulnerabilities found.")
    else:
        lines.append(f"Showing {len(vulnerabilities)} vulnerabilities:")
        for vuln in sort_vulnerabilities(vulnerabilities):
            lines.append(f"  - Package: {vuln.package_name}=={vuln.version} "
                         f"(Ecosystem: {vuln.ecosystem.value}, {vuln.manifest_file})")
            lines.append(f"    ID:       {vuln.display_id}")
            lines.append(f"    Severity: {vuln.severity.value} ({_format_score(vuln)})")
            lines.append(f"    Summary:  {vuln.summary}")
            if vuln.fixed_versions:
                lines.append(f"    Fixed in: {', '.join(vuln.fixed_versions)}")
            lines.append("-" * 20)

    if result.diagnostics:
        lines.append(f"Diagnostics ({len(result.diagnostics)}):")
        for diag in result.diagnostics:
            source = f" [{diag.source}]" if diag.source else ""
            lines.append(f"  {diag.kind}: {diag.message}{source}")
    lines.append("--- End Report ---")
    return "\n".join(lines) + "\n"


def render_json(result: ScanResult, vulnerabilities: list[NormalizedVulnerability]) -> str:
    data = result.to_dict()
    data["vulnerabilities"] = [vuln.to_dict() for vuln in sort_vulnerabilities(vulnerabilities)]
    return json.dumps(data, indent=2) + "\n"


HTML_CSS = """<style>
body { font-family: sans-serif; margin: 20px; background-color: #f4f7f6; color: #333; }
table { border-collapse: collapse; margin: 1em 0; width: 100%; box-shadow: 0 2px 8px rgba(0,0,0,0.1); background-color: #fff; }
th, td { border: 1px solid #ddd; padding: 10px 15px; text-align: left; vertical-align: top; }
th { background-color: #6c7ae0; color: white; font-weight: bold; text-transform: uppercase; letter-spacing: 0.05em; }
tr:nth-child(even) { background-color: #f9f9f9; }
.severity-CRITICAL { color: #FF0000; font-weight: bold; } .severity-HIGH { color: #FF8C00; font-weight: bold; }
.severity-MEDIUM { color: #DAA520; } .severity-LOW { color: #32CD32; }
.severity-UNKNOWN { color: #808080; }
pre { white-space: pre-wrap; word-wrap: break-word; margin: 0; font-family: inherit; font-size: 0.95em; }
h1 { color: #333; border-bottom: 2px solid #6c7ae0; padding-bottom: 10px;}
</style>"""


def render_html(result: ScanResult, vulnerabilities: list[NormalizedVulnerability]) -> str:
    parts = [f'<!DOCTYPE html><html lang="en"><head><title>Dependency Scan Report</title>'
             f'<meta charset="UTF-8">{HTML_CSS}</head><body><h1>Dependency Scan Report</h1>']
    if not result.success:
        parts.append(f"<p>Scan failed: {html.escape(result.error or '')}</p>")
    parts.append(f"<p>Scanned {result.scanned_files} manifest file(s) and {result.scanned_packages} package(s).</p>")

    if not vulnerabilities:
        parts.append("<p>No vulnerabilities found.</p>")
    else:
        parts.append(f"<p>Found {len(vulnerabilities)} vulnerabilities.</p><table><thead><tr>"
                     "<th>Severity</th><th>Score</th><th>Vulnerability ID</th><th>Package</th>"
                     "<th>Version</th><th>Ecosystem</th><th>Fixed In</th><th>Summary</th>"
                     "</tr></thead><tbody>")
        for vuln in sort_vulnerabilities(vulnerabilities):
            cells = [
                html.escape(_format_score(vuln)),
                html.escape(vuln.display_id),
                html.escape(vuln.package_name),
                html.escape(vuln.version),
                html.escape(vuln.ecosystem.value),
                html.escape(", ".join(vuln.fixed_versions) or "N/A"),
                f"<pre>{html.escape(vuln.summary)}</pre>",
            ]
            parts.append(f'<tr><td class="severity-{vuln.severity.value}">{vuln.severity.value}</td>'
                         + "".join(f"<td>{cell}</td>" for cell in cells) + "</tr>")
        parts.append("</tbody></table>")
    parts.append("</body></html>\n")
    return "\n".join(parts)


RENDERERS = {
    "text": render_text,
    "json": render_json,
    "html": render_html,
}


def render_report(result: ScanResult, fmt: str = "text", severity_threshold: Optional[str] = None,
                  ignore_ids: Iterable[str] = ()) -> str:
    vulnerabilities = filter_vulnerabilities(result.vulnerabilities, severity_threshold, ignore_ids)
    return RENDERERS[fmt.lower()](result, vulnerabilities)
