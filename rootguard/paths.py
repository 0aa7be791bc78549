# rootguard/paths.py
"""Pure path helpers shared by policies and validators.

Nothing here touches the filesystem except ``os.path.realpath``, which
resolves symlinks so a link cannot be used to leave a whitelisted tree.
"""

import os
import re
from urllib.parse import unquote, urlparse

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:[\\/]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")

CASE_INSENSITIVE_DEFAULT = os.name == "nt"


def has_control_characters(path: str) -> bool:
    return bool(_CONTROL_CHARS.search(path))


def unify_separators(path: str) -> str:
    """Replace both separator styles with the OS separator."""
    if os.sep == "/":
        return path.replace("\\", "/")
    return path.replace("/", os.sep)


def strip_file_uri(path: str) -> str:
    """Turn a ``file://`` URI into a plain path; other input is returned as-is."""
    if not path.lower().startswith("file://"):
        return path
    parsed = urlparse(path)
    local = unquote(parsed.path)
    # file:///C:/data -> /C:/data
    if re.match(r"^/[A-Za-z]:", local):
        local = local[1:]
    if parsed.netloc and parsed.netloc != "localhost":
        local = f"//{parsed.netloc}{local}"
    return local


def expand(path: str) -> str:
    """Apply every lexical rewrite: URI prefix, ``~`` and separators."""
    return unify_separators(os.path.expanduser(strip_file_uri(path)))


def is_absolute(path: str) -> bool:
    return os.path.isabs(expand(path))


def normalize_path(path: str | os.PathLike, base_directory: str | None = None) -> str:
    """Return the canonical absolute form of ``path``.

    Relative input is resolved against ``base_directory`` (cwd when None),
    ``.`` and ``..`` are collapsed and symlinks are resolved. The function
    is idempotent: normalizing its own output returns the same string.

    Raises:
        ValueError: If the path contains a NUL byte.
    """
    expanded = expand(os.fspath(path))
    if not os.path.isabs(expanded):
        expanded = os.path.join(base_directory or os.getcwd(), expanded)
    return os.path.realpath(expanded)


def is_within(path: str, root: str, case_insensitive: bool = False) -> bool:
    """True if ``path`` equals ``root`` or is a descendant of it.

    Matching is bounded by separators, so ``/a/bc`` is not within ``/a/b``.
    Both arguments must already be normalized.
    """
    if case_insensitive:
        path, root = path.casefold(), root.casefold()
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def is_path_pattern(pattern: str) -> bool:
    """True for absolute-path patterns such as ``/etc`` or ``C:\\Windows``."""
    return pattern.startswith(("/", "\\")) or bool(_DRIVE_PATTERN.match(pattern))


def _slashed(text: str) -> str:
    text = text.replace("\\", "/")
    return text.rstrip("/") or "/"


def matches_pattern(
    pattern: str, *candidates: str, case_insensitive: bool = CASE_INSENSITIVE_DEFAULT
) -> bool:
    """Check a forbidden pattern against raw and normalized forms.

    Path patterns match as a separator-bounded prefix, ignoring case when
    ``case_insensitive`` is set or the pattern starts with a drive letter.
    Everything else (traversal and encoded sequences) matches as a
    case-insensitive substring.
    """
    if is_path_pattern(pattern):
        folded = bool(_DRIVE_PATTERN.match(pattern)) or case_insensitive
        roots = {_slashed(pattern)}
        if os.path.isabs(pattern):
            roots.add(_slashed(os.path.realpath(pattern)))
        for candidate in candidates:
            text = _slashed(candidate)
            for root in roots:
                if folded:
                    text_cmp, root_cmp = text.casefold(), root.casefold()
                else:
                    text_cmp, root_cmp = text, root
                if text_cmp == root_cmp or text_cmp.startswith(root_cmp.rstrip("/") + "/"):
                    return True
        return False

    needle = pattern.casefold()
    return any(needle in candidate.casefold() for candidate in candidates)
