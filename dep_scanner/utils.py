# dep_scanner/utils.py
import logging
from typing import Optional

from .models import Diagnostic

logger = logging.getLogger(__name__)


def add_diagnostic(diagnostics: Optional[list[Diagnostic]], kind: str, message: str,
                   source: Optional[str] = None, log: logging.Logger = logger,
                   level: int = logging.WARNING) -> None:
    """Logs a recoverable problem and, when a collector is given, records it."""
    if source:
        log.log(level, f"{message} ({source})")
    else:
        log.log(level, message)
    if diagnostics is not None:
        diagnostics.append(Diagnostic(kind=kind, message=message, source=source))


def format_exception(exc: BaseException) -> str:
    return f"{exc.__class__.__name__}: {exc}"
