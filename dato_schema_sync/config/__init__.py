"""Configuration module for DatoCMS schema synchronization."""

from .settings import Config, DatoSettings, BuildSettings, setup_logging

__all__ = ['Config', 'DatoSettings', 'BuildSettings', 'setup_logging']
