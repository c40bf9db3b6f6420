"""
Service Layer - SearchDriver, PathListMatcher and ServicesContainer.
"""

from envseek.services.container import ServicesContainer, create_services
from envseek.services.env_search import EnvVarSearch
from envseek.services.matcher import MatchOptions, PathListMatcher
from envseek.services.search_service import SearchDriver
from envseek.services.search_types import (
    ALL_DOMAINS,
    RunSummary,
    SearchCommand,
    SearchDomain,
    SearchFlags,
    fix_filespec,
)

__all__ = [
    # Container and factory
    "ServicesContainer",
    "create_services",
    # Services
    "SearchDriver",
    "PathListMatcher",
    "MatchOptions",
    "EnvVarSearch",
    # Types
    "ALL_DOMAINS",
    "RunSummary",
    "SearchCommand",
    "SearchDomain",
    "SearchFlags",
    "fix_filespec",
]
