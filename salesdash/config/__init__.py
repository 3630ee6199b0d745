"""
Sales Dashboard Backend
Configuration Module
"""
from .settings import Settings, get_settings, resolve_reporting_timezone

__all__ = ["Settings", "get_settings", "resolve_reporting_timezone"]
