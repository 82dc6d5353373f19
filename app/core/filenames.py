import string

ALLOWED_CHARACTERS = frozenset(string.ascii_letters + string.digits + "-_.")
MAX_FILENAME_LENGTH = 255
FALLBACK_FILENAME = "unnamed"


def sanitize_filename(raw: str) -> str:
    """
    Reduce a client supplied name to a single safe path segment.

    Only ASCII letters, digits, '-', '_' and '.' survive, so separators and
    unicode look-alikes are dropped. Leading dots are stripped to prevent
    '..' and hidden files. The result is never empty.
    """
    kept = "".join(ch for ch in raw if ch in ALLOWED_CHARACTERS)
    kept = kept.lstrip(".")[:MAX_FILENAME_LENGTH]
    return kept or FALLBACK_FILENAME
