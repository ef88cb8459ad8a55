"""Configuration module for the SSO gateway."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
