"""
Live Handoff Router
Customer support chat routing between an AI assistant and human agents.
"""

__version__ = "1.0.0"

# Application metadata
APP_NAME = "Live Handoff Router"
APP_DESCRIPTION = "Real-time routing of customer chats between an AI assistant and human agents"

from .config import settings, get_settings

__all__ = [
    "settings",
    "get_settings",
    "APP_NAME",
    "APP_DESCRIPTION",
    "__version__",
]
