# dep_scanner/versions.py
import re

# Leading run of range operators, e.g. "^", "~", ">=", "<=", and the space after them
_CONSTRAINT_PREFIX = re.compile(r'^[\^~>=<\s]+')
_WILDCARD_SEGMENTS = ('x', 'X')


def clean_version(raw_version: str | None) -> str:
    """
    Reduces a version constraint to one concrete version usable as a query key.

    "^1.2.3" -> "1.2.3", "~2.0.0 || 3.0.0" -> "2.0.0", "1.0.0 - 2.0.0" -> "1.0.0",
    "1.2.x" -> "1.2.0". Returns "" when nothing usable is left; callers skip the
    package in that case.
    """
    if not raw_version:
        return ""

    cleaned = _CONSTRAINT_PREFIX.sub('', raw_version.strip())
    cleaned = cleaned.split('||', 1)[0]
    cleaned = cleaned.split(' - ', 1)[0]

    tokens = cleaned.split()
    if not tokens:
        return ""
    cleaned = tokens[0]

    segments = cleaned.split('.')
    for index, segment in enumerate(segments):
        if '*' in segment or segment in _WILDCARD_SEGMENTS:
            cleaned = '.'.join(segments[:index] + ['0'])
            break

    return cleaned
