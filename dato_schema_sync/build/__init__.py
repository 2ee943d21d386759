"""Build pipeline for DatoCMS schema synchronization."""

from .analyzer import DependencyAnalyzer
from .cache import CacheEntry, ReconciliationCache
from .context import BuildContext, RealBuildContext, ShadowBuildContext
from .deletion import DeletionDetector, DeletionManager
from .discovery import ModuleStore
from .graph import DependencyGraph
from .modules import DefinitionModule, ModuleKey
from .orchestrator import BuildOrchestrator
from .reconciler import Action, Decision, Reconciler, RemoteState, decide, fingerprint
from .results import (
    BuildResult,
    BuildStatus,
    DeletionCandidate,
    DeletionResult,
    DeletionStatus,
    RunReport,
)
from .runner import BuildRunner

__all__ = [
    'Action',
    'BuildContext',
    'BuildOrchestrator',
    'BuildResult',
    'BuildRunner',
    'BuildStatus',
    'CacheEntry',
    'Decision',
    'DefinitionModule',
    'DeletionCandidate',
    'DeletionDetector',
    'DeletionManager',
    'DeletionResult',
    'DeletionStatus',
    'DependencyAnalyzer',
    'DependencyGraph',
    'ModuleKey',
    'ModuleStore',
    'RealBuildContext',
    'Reconciler',
    'ReconciliationCache',
    'RemoteState',
    'RunReport',
    'ShadowBuildContext',
    'decide',
    'fingerprint',
]
