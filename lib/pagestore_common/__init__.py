"""PageStore Common Library

Shared utilities and classes for the page snapshot cache and scan queue.
"""

from pagestore_common import constants
from pagestore_common.config import ConfigurationManager, PageStoreSettings
from pagestore_common.logging_utils import log_summary, safe_log_event

__all__ = [
    "ConfigurationManager",
    "PageStoreSettings",
    "constants",
    "log_summary",
    "safe_log_event",
]
