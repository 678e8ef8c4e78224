"""Configuration module for managing system settings."""

from config.settings import (
    ClientConfig,
    ServerConfig,
    ProtocolConfig,
    Config,
    VARIANT_SIMPLE,
    VARIANT_MULTI,
)

__all__ = [
    'ClientConfig',
    'ServerConfig',
    'ProtocolConfig',
    'Config',
    'VARIANT_SIMPLE',
    'VARIANT_MULTI',
]
