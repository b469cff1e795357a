"""Name canonicalization — every cache and stats key is built from normalize_name()."""

import re

_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Lowercase, trim, and collapse internal whitespace runs to one space."""
    return _WHITESPACE.sub(" ", name.lower().strip())
