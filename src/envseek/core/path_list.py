"""
Building PathLists from raw directory strings.
"""

import logging
from collections.abc import Iterable
from typing import Optional

from envseek.core.filesystem import FilesystemInterface
from envseek.core.models import EntryKind, PathEntry, PathList, PathOrigin, path_key

logger = logging.getLogger(__name__)


def classify(fs: FilesystemInterface, canonical_path: str) -> EntryKind:
    """Directory, archive (an existing .zip/.egg/.whl file) or missing."""
    result = fs.stat(canonical_path)
    if result is None:
        return EntryKind.MISSING
    return result.kind


def build_path_list(
    owner: str,
    raw_paths: Iterable[str],
    fs: FilesystemInterface,
    case_sensitive: Optional[bool] = None,
    list_name: Optional[str] = None,
    deduplicate: bool = False,
    ordinals: Optional[Iterable[int]] = None,
) -> PathList:
    """
    Turn raw directory strings into a PathList.

    Args:
        owner: Compiler, interpreter or variable that owns the list
        raw_paths: Components in list order, exactly as the source gave them
        fs: Filesystem used to canonicalise and classify each component
        case_sensitive: Comparison policy for duplicates (None: platform default)
        list_name: Name used in each entry's origin (defaults to owner)
        deduplicate: Also mark and remove duplicates
        ordinals: Origin ordinals, one per raw path, for lists rebuilt from
            the cache (defaults to 0, 1, 2, ...)

    Returns:
        The PathList; ordinals in origins follow the raw order
    """
    name = list_name or owner
    plist = PathList(owner=owner, case_sensitive=case_sensitive)
    cwd = fs.current_directory()
    cwd_key = path_key(cwd, plist.effective_case_sensitive())

    numbered = zip(ordinals, raw_paths) if ordinals is not None else enumerate(raw_paths)
    for ordinal, raw in numbered:
        canonical = fs.canonicalise(raw)
        kind = classify(fs, canonical)
        entry = PathEntry(
            kind=kind,
            raw_path=raw,
            canonical_path=canonical,
            origin=PathOrigin(name, ordinal),
            is_cwd=path_key(canonical, plist.effective_case_sensitive()) == cwd_key,
        )
        if kind is EntryKind.MISSING:
            logger.debug(f"{name}[{ordinal}]: '{raw}' does not exist")
        plist.append(entry)

    if deduplicate:
        dropped = plist.deduplicate()
        if dropped:
            logger.debug(f"{name}: dropped {dropped} duplicate entries")
    return plist
