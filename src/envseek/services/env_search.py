"""
Environment-variable domain.

Turns ``PATH``, ``LIB``, ``INCLUDE`` and any user-named variable into
PathLists. Problems with individual components are reported the way a shell
user would want to hear about them: duplicated directories and directories
that do not exist are warned about and skipped.
"""

import logging
import os
from typing import Optional

from envseek.core.filesystem import FilesystemInterface
from envseek.core.models import EntryKind, PathList
from envseek.core.path_list import build_path_list
from envseek.core.path_utils import IS_WINDOWS, split_env_var

logger = logging.getLogger(__name__)

# The shell searches the current directory first on Windows only
_ADD_CWD = {"PATH": IS_WINDOWS}


def env_header(env_var: str) -> str:
    """Section title for the matches of one variable."""
    return f"Matches in %{env_var}:"


class EnvVarSearch:
    """Builds the PathList of an environment variable."""

    def __init__(
        self,
        fs: FilesystemInterface,
        case_sensitive: Optional[bool] = None,
        environ: Optional[dict[str, str]] = None,
    ):
        self.fs = fs
        self.case_sensitive = case_sensitive
        self.environ = environ

    def _value(self, env_var: str) -> Optional[str]:
        env = os.environ if self.environ is None else self.environ
        value = env.get(env_var)
        if value is None and IS_WINDOWS:
            upper = env_var.upper()
            value = next((v for k, v in env.items() if k.upper() == upper), None)
        return value

    def path_list(self, env_var: str) -> Optional[PathList]:
        """
        The components of a variable as a deduplicated PathList.

        Returns:
            None when the variable is not set
        """
        value = self._value(env_var)
        if not value:
            logger.debug(f"Env-var {env_var} not defined.")
            return None

        cwd = self.fs.current_directory()
        raw = split_env_var(env_var, value, cwd=cwd, add_cwd=_ADD_CWD.get(env_var.upper(), False))
        plist = build_path_list(
            owner=env_var,
            raw_paths=raw,
            fs=self.fs,
            case_sensitive=self.case_sensitive,
            list_name=env_var,
        )

        plist.mark_duplicates()
        for entry in plist:
            if entry.is_duplicate_of is not None:
                # The implicit cwd entry repeating an explicit "." is not worth a warning
                if not entry.is_cwd:
                    logger.warning(
                        f'{env_var}: directory "{entry.raw_path}" is duplicated. Skipping.'
                    )
            elif entry.kind is EntryKind.MISSING:
                logger.warning(f'{env_var}: directory "{entry.raw_path}" doesn\'t exist.')
        plist.compact()
        return plist
