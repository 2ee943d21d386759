"""
Deletion handling - item types whose definition modules were removed.

A cache entry with no discovered module behind it is a deletion candidate.
Candidates are only deleted when deletion is enabled and confirmed, and
never while a discovered module still references them.
"""

import logging
import sys
from typing import Callable, Iterable, List, Mapping, Optional, Set, Tuple

from ..definitions import BLOCK, MODEL
from ..exceptions import NotFoundError
from ..utils.dato_client import DatoClient
from .cache import ReconciliationCache
from .modules import ModuleKey
from .reconciler import RemoteState
from .results import DeletionCandidate, DeletionResult, DeletionStatus

logger = logging.getLogger(__name__)

# Models reference blocks, so models go first
DELETION_ORDER = {MODEL: 0, BLOCK: 1}


class DeletionDetector:
    """Finds cached item types that no definition module backs anymore."""

    def __init__(self, cache: ReconciliationCache):
        self.cache = cache

    def detect(self, discovered: Iterable[ModuleKey]) -> List[DeletionCandidate]:
        """
        Cached item types no discovered module backs anymore.

        An entry whose remote id a discovered module now owns (a renamed
        definition file adopting the same item type) is not a candidate; its
        stale cache entry is dropped without touching DatoCMS.
        """
        current = {str(k) for k in discovered}
        candidates = []
        for key, entry in self.cache.items():
            if key in current:
                continue
            kind = key.split(':', 1)[0]
            if kind not in DELETION_ORDER:
                logger.warning(f"Ignoring cache entry with unknown kind: {key}")
                continue
            owner = self.cache.find_by_id(entry.id, among=current)
            if owner is not None:
                logger.info(f"{key} is now defined by {owner} (id={entry.id}); forgetting {key}")
                self.cache.delete(key)
                continue
            candidates.append(DeletionCandidate(key=key, remote_id=entry.id, hash=entry.hash))
            logger.debug(f"Deletion candidate {key} (id={entry.id})")
        return sorted(candidates, key=lambda c: (DELETION_ORDER[c.kind], c.key))

    def filter_safe(
        self,
        candidates: List[DeletionCandidate],
        dependencies: Mapping[ModuleKey, Set[ModuleKey]],
    ) -> Tuple[List[DeletionCandidate], List[Tuple[DeletionCandidate, List[str]]]]:
        """Split candidates into safe ones and ones still referenced by a module."""
        safe: List[DeletionCandidate] = []
        unsafe: List[Tuple[DeletionCandidate, List[str]]] = []
        for candidate in candidates:
            used_by = sorted(str(source) for source, targets in dependencies.items()
                             if any(str(t) == candidate.key for t in targets))
            if used_by:
                unsafe.append((candidate, used_by))
            else:
                safe.append(candidate)
        return safe, unsafe


def prompt_confirmation(candidates: List[DeletionCandidate]) -> bool:
    """Ask on the terminal; anything but an explicit yes keeps the item types."""
    if not sys.stdin or not sys.stdin.isatty():
        logger.warning("Not running interactively; skipping deletions "
                       "(use --skip-deletion-confirmation to delete without asking)")
        return False
    print(f"\nDelete {len(candidates)} item type(s) from DatoCMS?")
    for candidate in candidates:
        print(f"  - {candidate.kind}: {candidate.name} ({candidate.remote_id})")
    answer = input("Type 'yes' to confirm: ")
    return answer.strip().lower() in ('y', 'yes')


class DeletionManager:
    """Reports, confirms and performs deletions."""

    def __init__(self, client: DatoClient, cache: ReconciliationCache,
                 remote: Optional[RemoteState] = None,
                 confirm: Callable[[List[DeletionCandidate]], bool] = prompt_confirmation):
        self.client = client
        self.cache = cache
        self.remote = remote
        self.confirm = confirm

    def handle(
        self,
        candidates: List[DeletionCandidate],
        unsafe: List[Tuple[DeletionCandidate, List[str]]],
        enabled: bool,
        skip_confirmation: bool = False,
    ) -> List[DeletionResult]:
        """Delete safe candidates if allowed; report everything else."""
        results: List[DeletionResult] = []
        if not candidates and not unsafe:
            logger.info("No item types to delete - all cached item types have definitions")
            return results

        for candidate, used_by in unsafe:
            logger.warning(
                f"{candidate.kind} {candidate.name} has no definition but is still used by "
                f"{', '.join(used_by)}; not deleting it"
            )
            results.append(DeletionResult(candidate, DeletionStatus.UNSAFE, used_by=used_by))

        if not candidates:
            return results

        names = ', '.join(f"{c.kind}:{c.name} ({c.remote_id})" for c in candidates)
        if not enabled:
            logger.warning(f"Deletion skipped for {len(candidates)} orphaned item type(s): {names}")
            results.extend(DeletionResult(c, DeletionStatus.SKIPPED) for c in candidates)
            return results

        logger.info(f"Found {len(candidates)} item type(s) without definitions: {names}")
        if not skip_confirmation and not self.confirm(candidates):
            logger.info("Deletions not confirmed, leaving item types in place")
            results.extend(DeletionResult(c, DeletionStatus.SKIPPED) for c in candidates)
            return results

        results.extend(self._delete(c) for c in candidates)
        deleted = sum(1 for r in results if r.status is DeletionStatus.DELETED)
        failed = sum(1 for r in results if r.status is DeletionStatus.FAILED)
        logger.info(f"Deletion summary: {deleted} deleted, {failed} failed")
        return results

    def _delete(self, candidate: DeletionCandidate) -> DeletionResult:
        try:
            self.client.delete_item_type(candidate.remote_id)
            logger.info(f"Deleted {candidate.kind}: {candidate.name}")
        except NotFoundError:
            logger.info(f"{candidate.kind} {candidate.name} was already gone from DatoCMS")
        except Exception as e:
            logger.error(f"Failed to delete {candidate.kind}: {candidate.name} - {e}")
            return DeletionResult(candidate, DeletionStatus.FAILED, error=e)

        self.cache.delete(candidate.key)
        if self.remote is not None:
            self.remote.remove(candidate.remote_id)
        return DeletionResult(candidate, DeletionStatus.DELETED)
