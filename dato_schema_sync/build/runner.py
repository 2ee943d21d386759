"""
Build runner - the full pipeline behind the "build" command.

discover -> analyze -> sort -> build -> delete orphans -> report

Everything up to and including the topological sort happens before the
first remote call, so configuration errors never leave DatoCMS half
updated.
"""

import logging
import time
from typing import Callable, List, Optional

from ..config.settings import Config
from ..exceptions import ApiError
from ..utils.dato_client import DatoClient
from .analyzer import DependencyAnalyzer
from .cache import ReconciliationCache
from .deletion import DeletionDetector, DeletionManager, prompt_confirmation
from .discovery import ModuleStore
from .graph import DependencyGraph
from .orchestrator import BuildOrchestrator
from .reconciler import Reconciler, RemoteState
from .results import DeletionCandidate, RunReport

logger = logging.getLogger(__name__)


class BuildRunner:
    """Runs one build of all definition modules against DatoCMS."""

    def __init__(self, config: Config, client: DatoClient,
                 cache: Optional[ReconciliationCache] = None,
                 confirm: Callable[[List[DeletionCandidate]], bool] = prompt_confirmation):
        self.config = config
        self.client = client
        self.settings = config.build
        self.cache = cache or ReconciliationCache(
            self.settings.cache_path, skip_reads=self.settings.no_cache
        )
        self.confirm = confirm
        self.orchestrator: Optional[BuildOrchestrator] = None

    def run(self) -> RunReport:
        start_time = time.time()
        report = RunReport()

        store = ModuleStore(self.settings.blocks_path, self.settings.models_path)
        modules = store.discover()
        self.cache.load()

        if not modules and not len(self.cache):
            logger.info("No definition modules found and nothing cached; nothing to do")
            return report

        analyzer = DependencyAnalyzer(self.config)
        dependencies = analyzer.analyze(modules)
        keys = [m.key for m in modules]
        graph = DependencyGraph.build(keys, dependencies)
        plan = graph.topo_sort()
        logger.info(f"Build order: {' -> '.join(map(str, plan)) or '(empty)'}")

        if not self.client.connect():
            raise ApiError("Failed to connect to DatoCMS")
        remote = RemoteState.fetch(self.client)
        reconciler = Reconciler(self.client, self.cache, remote,
                                allow_field_deletion=not self.settings.skip_deletion)
        self.orchestrator = BuildOrchestrator(
            modules, graph, reconciler, self.cache, config=self.config,
            concurrency=self.settings.effective_concurrency(),
        )
        report.results = self.orchestrator.run(plan)
        if self.orchestrator.cancelled:
            logger.warning("Build was cancelled; skipping deletion of orphaned item types")
            report.total_duration = time.time() - start_time
            return report

        detector = DeletionDetector(self.cache)
        candidates = detector.detect(keys)
        safe, unsafe = detector.filter_safe(candidates, dependencies)
        manager = DeletionManager(self.client, self.cache, remote, confirm=self.confirm)
        report.deletions = manager.handle(
            safe, unsafe,
            enabled=not self.settings.skip_deletion,
            skip_confirmation=self.settings.skip_deletion_confirmation,
        )

        report.total_duration = time.time() - start_time
        return report
