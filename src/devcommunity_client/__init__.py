"""Async Python client for the DevCommunity API."""
from .client import DevCommunityClient
from .core.config import Settings, get_settings
from .shared.api_errors import ApiError

__all__ = ["ApiError", "DevCommunityClient", "Settings", "get_settings"]
