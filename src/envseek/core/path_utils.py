"""
Path utilities for envseek.

Canonicalisation, environment-variable expansion and splitting, Cygwin path
conversion and PATH lookups used by every probe and by the matcher.
"""

import logging
import ntpath
import os
import posixpath
import re
import sys
from typing import Optional

from envseek.core.models import default_case_sensitive, path_key

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")
_PERCENT_VAR_RE = re.compile(r"%([^%\s]+)%")
_CYGDRIVE_RE = re.compile(r"^/cygdrive/([A-Za-z])(?:/(.*))?$")

CWD_TOKENS = frozenset({".", ".\\", "./"})


def is_windows_path(path: str) -> bool:
    """True for drive-qualified (``c:\\x``) or UNC (``\\\\host\\x``) paths."""
    return bool(_DRIVE_RE.match(path)) or path.startswith("\\\\")


def expand_env(value: str, environ: Optional[dict[str, str]] = None) -> str:
    """
    Expand ``%VAR%``, ``$VAR``, ``${VAR}`` and a leading ``~``.

    Undefined variables are left untouched so callers can detect them.
    """
    env = os.environ if environ is None else environ

    def _replace(m: re.Match) -> str:
        name = m.group(1)
        if name in env:
            return env[name]
        if IS_WINDOWS:
            for key, val in env.items():
                if key.upper() == name.upper():
                    return val
        return m.group(0)

    value = _PERCENT_VAR_RE.sub(_replace, value)
    if "$" in value:
        if environ is None:
            value = os.path.expandvars(value)
        else:
            value = re.sub(
                r"\$(\w+|\{[^}]*\})",
                lambda m: env.get(m.group(1).strip("{}"), m.group(0)),
                value,
            )
    if value.startswith("~"):
        value = os.path.expanduser(value)
    return value


def has_unexpanded(value: str) -> bool:
    return bool(_PERCENT_VAR_RE.search(value))


def _fix_drive(path: str) -> str:
    if _DRIVE_RE.match(path) or (len(path) == 2 and path[1] == ":"):
        return path[0].lower() + path[1:]
    return path


def canonicalise(path: str, cwd: Optional[str] = None) -> str:
    """
    Return the canonical form of a path.

    Environment references are expanded, the path is made absolute against
    ``cwd`` (default: the process's current directory), ``.`` and ``..`` are
    resolved lexically, a Windows drive letter is lower-cased and trailing
    separators are removed. Component case is kept. Applying canonicalise
    to its own result returns it unchanged.
    """
    p = expand_env(path.strip().strip('"'))

    if is_windows_path(p):
        p = _fix_drive(ntpath.normpath(p))
        return p if IS_WINDOWS else p.replace("\\", "/")

    if IS_WINDOWS:
        if not ntpath.isabs(p):
            p = ntpath.join(cwd or os.getcwd(), p)
        return _fix_drive(ntpath.normpath(p))

    if not posixpath.isabs(p):
        p = posixpath.join(cwd or os.getcwd(), p)
    p = posixpath.normpath(p)
    if p.startswith("//") and not p.startswith("///"):
        # POSIX keeps a leading double slash; collapse it for stable keys
        p = p[1:]
    return p


def to_display(path: str, unix: bool = False) -> str:
    """Render a canonical path with forward slashes or native separators."""
    if unix:
        return path.replace("\\", "/")
    if IS_WINDOWS:
        return path.replace("/", "\\")
    return path


def join_path(base: str, *names: str) -> str:
    """Join names onto a canonical path with its own separator style."""
    sep = "\\" if "\\" in base else "/"
    result = base
    for name in names:
        name = name.replace("/", sep).replace("\\", sep).strip(sep)
        if not name:
            continue
        result = result + name if result.endswith(sep) else f"{result}{sep}{name}"
    return result


def same_path(a: str, b: str, case_sensitive: Optional[bool] = None) -> bool:
    if case_sensitive is None:
        case_sensitive = default_case_sensitive()
    return path_key(a, case_sensitive) == path_key(b, case_sensitive)


def cygwin_to_windows(path: str) -> str:
    """Convert ``/cygdrive/c/dir`` to ``c:/dir``; other paths are returned as-is."""
    m = _CYGDRIVE_RE.match(path)
    if not m:
        return path
    drive, rest = m.group(1).lower(), m.group(2) or ""
    return f"{drive}:/{rest}"


def split_env_var(
    env_name: str,
    value: Optional[str],
    cwd: Optional[str] = None,
    add_cwd: bool = False,
    separator: Optional[str] = None,
    conv_cygdrive: bool = True,
) -> list[str]:
    """
    Split an environment variable into its path components.

    Components are unquoted, trailing separators are stripped (except on a
    bare drive root), ``.`` becomes the current directory and
    ``/cygdrive/x/..`` becomes ``x:/..``. Suspicious components are logged.

    Args:
        env_name: Name used in warnings
        value: The variable's value; None yields an empty list
        cwd: Current directory used for ``.`` components
        add_cwd: Put the current directory first, as the shell search does
        separator: List separator (default: os.pathsep)
        conv_cygdrive: Convert ``/cygdrive/x`` components

    Returns:
        Raw components in list order
    """
    if not value:
        logger.debug(f"split_env_var('{env_name}') called with an empty value")
        return []

    cwd = cwd or os.getcwd()
    sep = separator or os.pathsep
    components: list[str] = []

    tokens = [t for t in value.split(sep) if t.strip()]
    if add_cwd and (not tokens or tokens[0].strip() not in CWD_TOKENS):
        components.append(cwd)

    for tok in tokens:
        tok = tok.strip()
        quoted = len(tok) >= 2 and tok[0] == '"' and tok[-1] == '"'
        if " " in tok and not quoted and IS_WINDOWS:
            logger.warning(f'{env_name}: "{tok}" needs to be enclosed in quotes.')
        if quoted:
            tok = tok[1:-1]

        if len(tok) > 3 and tok[-1] in "\\/":
            tok = tok.rstrip("\\/") or tok

        if has_unexpanded(tok):
            logger.warning(f'{env_name}: unexpanded component "{tok}".')

        if tok in CWD_TOKENS:
            if components:
                logger.warning(
                    f'Having "{tok}" not first in "{env_name}" is asking for trouble.'
                )
            tok = cwd
        elif conv_cygdrive and tok.lower().startswith("/cygdrive/"):
            converted = cygwin_to_windows(tok)
            logger.debug(f"CygPath conv: '{tok}' -> '{converted}'")
            tok = converted
        components.append(tok)

    return components


def executable_names(name: str, environ: Optional[dict[str, str]] = None) -> list[str]:
    """Candidate file names for an executable (adds PATHEXT suffixes on Windows)."""
    if not IS_WINDOWS or os.path.splitext(name)[1]:
        return [name]
    env = os.environ if environ is None else environ
    exts = env.get("PATHEXT", ".COM;.EXE;.BAT;.CMD").split(";")
    return [name + ext.lower() for ext in exts if ext]


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and (IS_WINDOWS or os.access(path, os.X_OK))


def which_all(
    name: str,
    env_var: str = "PATH",
    environ: Optional[dict[str, str]] = None,
) -> list[str]:
    """
    Every location of an executable along a PATH-like variable, in order.

    Duplicated directories are only visited once.
    """
    env = os.environ if environ is None else environ
    found: list[str] = []
    seen: set[str] = set()
    for directory in split_env_var(env_var, env.get(env_var), conv_cygdrive=False):
        key = canonicalise(directory)
        if key in seen:
            continue
        seen.add(key)
        for candidate in executable_names(name, env):
            full = os.path.join(directory, candidate)
            if _is_executable(full):
                found.append(canonicalise(full))
                break
    return found


def searchpath(
    name: str,
    env_var: str = "PATH",
    environ: Optional[dict[str, str]] = None,
) -> Optional[str]:
    """First location of an executable along a PATH-like variable, or None."""
    hits = which_all(name, env_var, environ)
    return hits[0] if hits else None
