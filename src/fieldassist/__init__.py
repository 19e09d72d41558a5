"""AI edit-proposal and patch engine for content-management field editing.

Hosts configure logging once at startup with :func:`setup_logging` or
:func:`setup_logging_from_settings`, then drive an ``AssistantSession``.
"""

from .utils.logging import get_log_path, setup_logging, setup_logging_from_settings

__version__ = "0.1.0"

__all__ = ["__version__", "get_log_path", "setup_logging", "setup_logging_from_settings"]
