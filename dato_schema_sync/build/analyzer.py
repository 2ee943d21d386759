"""
Dependency Analyzer - infers module dependencies by shadow execution.

Each entry point is run against its own ShadowBuildContext; every
resolve_block / resolve_model call becomes a dependency edge. Nothing is
sent to DatoCMS during analysis.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Set

from .context import ShadowBuildContext, invoke_entry_point
from .modules import DefinitionModule, ModuleKey

logger = logging.getLogger(__name__)

MAX_ANALYSIS_WORKERS = 16


class DependencyAnalyzer:
    """Runs every module in shadow mode and collects its forward lookups."""

    def __init__(self, config: Any, max_workers: int = MAX_ANALYSIS_WORKERS):
        self.config = config
        self.max_workers = max_workers
        self.failures: Dict[ModuleKey, BaseException] = {}

    def _analyze_one(self, module: DefinitionModule) -> Set[ModuleKey]:
        context = ShadowBuildContext(self.config, module.key)
        invoke_entry_point(module.entry_point, context)
        return context.dependencies

    def analyze(self, modules: List[DefinitionModule]) -> Dict[ModuleKey, Set[ModuleKey]]:
        """
        Return the dependency set of every module.

        A module whose shadow run raises gets an empty set; its error is
        kept in self.failures and will resurface when it is built for real.
        """
        self.failures = {}
        dependencies: Dict[ModuleKey, Set[ModuleKey]] = {m.key: set() for m in modules}
        if not modules:
            return dependencies

        logger.info(f"Analyzing dependencies of {len(modules)} modules")
        workers = max(1, min(self.max_workers, len(modules)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="analyze") as executor:
            futures = {executor.submit(self._analyze_one, m): m for m in modules}
            for future in as_completed(futures):
                module = futures[future]
                try:
                    found = future.result()
                except Exception as e:
                    self.failures[module.key] = e
                    logger.warning(f"Failed to analyze dependencies of {module.key}: {e}")
                    continue
                dependencies[module.key] = found
                if found:
                    logger.debug(f"{module.key} depends on {', '.join(sorted(map(str, found)))}")
                else:
                    logger.debug(f"{module.key} has no dependencies")

        return dependencies
