"""
Build Orchestrator - runs definition modules for real, in dependency order.

Modules are submitted to a bounded worker pool once everything they depend
on has built successfully. Forward lookups made while a module runs are
resolved through per-module futures, so each module is synchronized at most
once per run no matter how many modules reference it.
"""

import difflib
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Tuple

from ..definitions import ItemTypeDefinition
from ..exceptions import CycleError, DefinitionError, DependencyFailedError, ItemNotFoundError
from .cache import CacheEntry, ReconciliationCache
from .context import RealBuildContext, invoke_entry_point
from .graph import DependencyGraph
from .modules import DefinitionModule, ModuleKey
from .reconciler import Action, Reconciler, fingerprint_remote_id
from .results import BuildResult, BuildStatus

logger = logging.getLogger(__name__)


class BuildOrchestrator:
    """
    Executes a build plan against DatoCMS.

    A module whose dependency failed or was blocked is reported as blocked
    and its entry point is never invoked.
    """

    def __init__(self, modules: List[DefinitionModule], graph: DependencyGraph,
                 reconciler: Reconciler, cache: ReconciliationCache, config: Any = None,
                 concurrency: int = 3):
        self.modules: Dict[ModuleKey, DefinitionModule] = {m.key: m for m in modules}
        self.graph = graph
        self.reconciler = reconciler
        self.cache = cache
        self.config = config
        self.concurrency = max(1, concurrency)
        self._lock = threading.RLock()
        self._builds: Dict[ModuleKey, Future] = {}
        self._waiting_on: Dict[ModuleKey, ModuleKey] = {}
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop scheduling new modules; running ones are allowed to finish."""
        if not self._cancelled.is_set():
            logger.warning("Build cancelled, waiting for running modules to finish")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, plan: List[ModuleKey]) -> List[BuildResult]:
        """Build every module of the plan and return results in plan order."""
        logger.info(f"Building {len(plan)} modules with concurrency {self.concurrency}")
        results: Dict[ModuleKey, BuildResult] = {}
        pending: List[ModuleKey] = list(plan)
        running: Dict[Future, ModuleKey] = {}

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="build") as executor:
            try:
                while pending and not self.cancelled:
                    self._schedule(pending, running, results, executor)
                    if not running:
                        # Nothing runnable left: remaining modules wait on
                        # something outside the plan
                        for key in pending:
                            results[key] = BuildResult(
                                str(key), BuildStatus.BLOCKED,
                                error=DependencyFailedError(str(key), "dependencies never completed"),
                            )
                        pending.clear()
                        break
                    done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                    for future in done:
                        key = running.pop(future)
                        results[key] = future.result()
            except KeyboardInterrupt:
                self.cancel()
                executor.shutdown(wait=True, cancel_futures=True)
                raise
            finally:
                for future, key in running.items():
                    if not future.cancelled():
                        results[key] = future.result()

        if pending:
            logger.warning(f"{len(pending)} modules were not built: {', '.join(map(str, pending))}")
            for key in pending:
                results[key] = self._unscheduled_result(key)
        return [results[key] for key in plan if key in results]

    def _unscheduled_result(self, key: ModuleKey) -> BuildResult:
        """Result for a module the scheduler never submitted, unless a lookup built it inline."""
        with self._lock:
            future = self._builds.get(key)
        if future is not None and future.done() and future.exception() is None:
            return future.result()
        return BuildResult(str(key), BuildStatus.CANCELLED)

    def _schedule(self, pending: List[ModuleKey], running: Dict[Future, ModuleKey],
                  results: Dict[ModuleKey, BuildResult], executor: ThreadPoolExecutor) -> None:
        """Block what cannot run and submit what is ready, in plan order."""
        for key in list(pending):
            deps = self.graph.dependencies_of(key) if key in self.graph else []
            failed = [d for d in deps if d in results and not results[d].succeeded]
            if failed:
                names = ', '.join(str(d) for d in failed)
                logger.warning(f"Skipping {key}: dependency {names} did not build")
                results[key] = BuildResult(
                    str(key), BuildStatus.BLOCKED, error=DependencyFailedError(names)
                )
                pending.remove(key)
                continue
            if len(running) >= self.concurrency:
                continue
            if all(d in results for d in deps):
                running[executor.submit(self.ensure_built, key)] = key
                pending.remove(key)

    def _claim(self, key: ModuleKey) -> Tuple[Future, bool]:
        """Future for key's build and whether the caller must run it."""
        with self._lock:
            future = self._builds.get(key)
            if future is not None:
                return future, False
            future = Future()
            self._builds[key] = future
            return future, True

    def _run_claimed(self, key: ModuleKey, future: Future) -> BuildResult:
        try:
            result = self._build(key)
        except BaseException as e:
            future.set_exception(e)
            raise
        future.set_result(result)
        return result

    def ensure_built(self, key: ModuleKey) -> BuildResult:
        """Build key unless this run already did (or is doing) so."""
        future, owner = self._claim(key)
        if owner:
            return self._run_claimed(key, future)
        return future.result()

    def _check_wait_cycle(self, owner: ModuleKey, target: ModuleKey) -> None:
        """Raise CycleError if owner waiting on target would deadlock. Caller holds the lock."""
        chain = [owner, target]
        current = target
        while current in self._waiting_on:
            current = self._waiting_on[current]
            chain.append(current)
            if current == owner:
                raise CycleError([str(k) for k in chain])
            if len(chain) > len(self.modules) + 1:
                break

    def resolve(self, owner: ModuleKey, target: ModuleKey) -> str:
        """Remote id of target, building it first if needed."""
        if target not in self.modules:
            return self._resolve_undiscovered(owner, target)
        if target == owner:
            raise CycleError([str(owner), str(owner)])

        with self._lock:
            future, is_owner = self._claim(target)
            if not is_owner and not future.done():
                self._check_wait_cycle(owner, target)
            self._waiting_on[owner] = target

        try:
            if is_owner:
                logger.debug(f"Building dependency {target} for {owner}")
                result = self._run_claimed(target, future)
            else:
                result = future.result()
        finally:
            with self._lock:
                self._waiting_on.pop(owner, None)

        if not result.succeeded:
            raise DependencyFailedError(str(target), str(result.error or result.status.value))
        return result.remote_id

    def _resolve_undiscovered(self, owner: ModuleKey, target: ModuleKey) -> str:
        entry = self.cache.get(str(target))
        if entry is not None:
            logger.warning(
                f"{owner} references {target}, which has no definition module; "
                f"using cached id {entry.id}"
            )
            return entry.id

        available = sorted(
            {k.name for k in self.modules if k.kind == target.kind}
            | {ModuleKey.parse(k).name for k in self.cache.keys() if k.startswith(f"{target.kind}:")}
        )
        raise ItemNotFoundError(
            _not_found_message(target, available), target.kind, target.name, available
        )

    def _build(self, key: ModuleKey) -> BuildResult:
        """Run one module for real. Never raises for module-level failures."""
        module = self.modules[key]
        start = time.time()
        logger.info(f"Building {key.kind}: {key.name}")
        try:
            context = RealBuildContext(self.config, key, self.resolve)
            produced = invoke_entry_point(module.entry_point, context)
            status, remote_id = self._reconcile(module, produced)
        except DependencyFailedError as e:
            logger.warning(f"{key} blocked: {e}")
            return BuildResult(str(key), BuildStatus.BLOCKED, error=e,
                               duration_seconds=time.time() - start)
        except Exception as e:
            logger.error(f'Failed to build {key.kind} "{key.name}": {e}')
            return BuildResult(str(key), BuildStatus.FAILED, error=e,
                               duration_seconds=time.time() - start)

        logger.info(f"{key.kind}: {key.name} {status.value} (id={remote_id})")
        return BuildResult(str(key), status, remote_id=remote_id,
                           duration_seconds=time.time() - start)

    def _reconcile(self, module: DefinitionModule, produced: Any) -> Tuple[BuildStatus, str]:
        cache_key = str(module.key)

        if isinstance(produced, str):
            # The module synchronized itself and handed back the id
            entry = CacheEntry(fingerprint_remote_id(produced), produced)
            if self.cache.get(cache_key) == entry:
                return BuildStatus.UNCHANGED, produced
            self.cache.set(cache_key, entry)
            return BuildStatus.UPDATED, produced

        if not isinstance(produced, ItemTypeDefinition):
            raise DefinitionError(
                f"{module.key} must return an ItemTypeDefinition or a remote id, "
                f"got {type(produced).__name__}"
            )
        if produced.kind != module.kind:
            raise DefinitionError(
                f"{module.key} lives in the {module.kind}s directory but defines a {produced.kind}"
            )

        decision = self.reconciler.reconcile(cache_key, produced)
        remote_id = self.reconciler.apply(decision, produced)
        if decision.action is not Action.UNCHANGED:
            self.cache.set(cache_key, CacheEntry(decision.fingerprint, remote_id))
        return decision.action.status, remote_id


def _not_found_message(target: ModuleKey, available: List[str]) -> str:
    message = f'Cannot find {target.kind} with name "{target.name}".'
    if not available:
        return f"{message} No {target.kind}s are available."
    lowered = target.name.lower()
    similar = [n for n in available if lowered in n.lower() or n.lower() in lowered]
    similar += [n for n in difflib.get_close_matches(target.name, available, n=3) if n not in similar]
    if similar:
        return (f"{message} Did you mean one of these: {', '.join(similar[:3])}? "
                f"Available {target.kind}s: {', '.join(available)}")
    return f"{message} Available {target.kind}s: {', '.join(available)}"
