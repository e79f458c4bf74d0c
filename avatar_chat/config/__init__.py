"""Configuration modules for Avatar Chat."""

from .settings import (
    ServerSettings,
    ClientSettings,
    get_settings,
    get_client_settings,
    load_server_settings,
    load_client_settings,
    reset_settings,
)

__all__ = [
    'ServerSettings',
    'ClientSettings',
    'get_settings',
    'get_client_settings',
    'load_server_settings',
    'load_client_settings',
    'reset_settings',
]
