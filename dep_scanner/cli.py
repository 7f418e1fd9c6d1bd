import logging
import os
import sys
from pathlib import Path

import click

from .config import FORMAT_CHOICES, SEVERITY_CHOICES, ConfigError, load_config
from .models import ManifestFile
from .osv_scanner import OsvClient
from .parser import detect_manifest_type
from .reporting import render_report
from .scanner import scan_files

logger = logging.getLogger(__name__)

SKIP_DIRS = {'node_modules', '.git', 'vendor', 'target', '__pycache__', '.venv'}
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _iter_candidate_paths(paths):
    for raw in paths:
        path = Path(raw)
        if path.is_file():
            yield path
            continue
        for root, dirs, files in os.walk(path):
            dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS)
            for name in sorted(files):
                yield Path(root) / name


def collect_manifest_files(paths) -> list[ManifestFile]:
    """
    Reads every recognised manifest under ``paths``. Files named explicitly are
    read whatever their name, so the scan can report them as unrecognised.
    """
    manifests = []
    explicit_files = {Path(p) for p in paths if Path(p).is_file()}
    for path in _iter_candidate_paths(paths):
        if path not in explicit_files and detect_manifest_type(str(path)) is None:
            continue
        try:
            content = path.read_text(encoding='utf-8', errors='replace')
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            continue
        manifests.append(ManifestFile(path=str(path), content=content))
    return manifests


def _configure_logging(level: str):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT,
                        stream=sys.stderr, force=True)


@click.group(context_settings=dict(help_option_names=['-h', '--help']))
def cli():
    """
    Dependency vulnerability scanner backed by OSV.dev.

    Reads package.json, requirements.txt, go.mod, Cargo.toml and pom.xml manifests.
    """


@cli.command("scan")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--format", "output_format", type=click.Choice(FORMAT_CHOICES, case_sensitive=False), help="Output format.")
@click.option("-o", "--output-file", type=click.Path(dir_okay=False), help="Path to save the report output.")
@click.option("--severity-threshold", type=click.Choice(SEVERITY_CHOICES, case_sensitive=False), help="Minimum severity to report.")
@click.option("--ignore", type=str, help="Comma-separated vulnerability IDs to ignore (e.g., CVE-2020-123,GHSA-abc-123).")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="YAML configuration file.")
@click.option("--log-level", type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False), help="Logging verbosity.")
def scan(paths, output_format, output_file, severity_threshold, ignore, config_path, log_level):
    """Scans manifest files, or directories containing them, for vulnerable dependencies."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.UsageError(str(e))
    config = config.with_overrides(
        format=output_format.lower() if output_format else None,
        output_file=output_file,
        severity_threshold=severity_threshold.upper() if severity_threshold else None,
        log_level=log_level,
    )
    _configure_logging(config.log_level)

    ignore_ids = set(config.ignore_vulnerabilities)
    if ignore:
        ignore_ids |= {v.strip() for v in ignore.split(',') if v.strip()}

    files = collect_manifest_files(paths)
    with OsvClient(config) as client:
        result = scan_files(files, client)

    report = render_report(result, config.format, config.severity_threshold, ignore_ids)
    if config.output_file:
        path = Path(config.output_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(report, encoding='utf-8')
        click.echo(f"Report saved to: {path.resolve()}", err=True)
    else:
        click.echo(report, nl=False)

    if not result.success:
        click.secho(f"Error: {result.error}", fg="red", err=True)
        sys.exit(1)


@cli.command("detect")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
def detect(paths):
    """Lists the manifests that a scan would read, without contacting OSV."""
    found = 0
    for path in _iter_candidate_paths(paths):
        ecosystem = detect_manifest_type(str(path))
        if ecosystem is None:
            continue
        found += 1
        click.echo(f"{ecosystem.value:<10} {path}")
    if not found:
        click.echo("No dependency manifest files found.")


if __name__ == "__main__":
    cli()
