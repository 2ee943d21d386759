"""
DatoCMS Schema Synchronization Package

Keeps DatoCMS blocks and models in sync with Python definition modules:
- Discovers block and model definition files
- Infers dependencies between them from their forward lookups
- Builds them in dependency order with a bounded worker pool
- Skips item types whose definition did not change since the last build
- Detects (and optionally deletes) item types whose definitions were removed

Uses requests for the Content Management API and PyYAML for config files.
"""

__version__ = '1.0.0'
__author__ = 'DatoCMS Schema Sync'

from .config import Config, setup_logging
from .definitions import ItemTypeDefinition, generate_api_key
from .utils import DatoClient
from .build import (
    BuildContext,
    BuildRunner,
    BuildStatus,
    RunReport,
)

__all__ = [
    'Config',
    'setup_logging',
    'ItemTypeDefinition',
    'generate_api_key',
    'DatoClient',
    'BuildContext',
    'BuildRunner',
    'BuildStatus',
    'RunReport',
]
