"""
Build contexts handed to definition module entry points.

The same entry point runs twice per build: once against a ShadowBuildContext
that only records which blocks and models it looks up, and once against a
RealBuildContext that resolves those lookups to remote item type ids.
"""

import asyncio
import inspect
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Set

from ..definitions import BLOCK, MODEL
from .modules import ModuleKey

logger = logging.getLogger(__name__)


class BuildContext(ABC):
    """Interface passed to every entry point."""

    def __init__(self, config: Any):
        self.config = config

    @abstractmethod
    def resolve(self, key: ModuleKey) -> str:
        """Return the remote item type id of the module with this key."""
        pass

    def resolve_block(self, name: str) -> str:
        """Remote id of the block defined in blocks/<name>.py."""
        return self.resolve(ModuleKey(BLOCK, name))

    def resolve_model(self, name: str) -> str:
        """Remote id of the model defined in models/<name>.py."""
        return self.resolve(ModuleKey(MODEL, name))


class ShadowBuildContext(BuildContext):
    """Records forward lookups without touching the remote service."""

    def __init__(self, config: Any, owner: ModuleKey):
        super().__init__(config)
        self.owner = owner
        self.dependencies: Set[ModuleKey] = set()

    def resolve(self, key: ModuleKey) -> str:
        logger.debug(f"{self.owner} looks up {key}")
        self.dependencies.add(key)
        return f"shadow-{key.kind}-{key.name}"


class RealBuildContext(BuildContext):
    """Resolves lookups by synchronizing the referenced module first."""

    def __init__(self, config: Any, owner: ModuleKey,
                 resolver: Callable[[ModuleKey, ModuleKey], str]):
        super().__init__(config)
        self.owner = owner
        self._resolver = resolver

    def resolve(self, key: ModuleKey) -> str:
        return self._resolver(self.owner, key)


def invoke_entry_point(entry_point: Callable, context: BuildContext) -> Any:
    """Call an entry point, driving it to completion if it is a coroutine."""
    result = entry_point(context)
    if inspect.isawaitable(result):
        result = _run_awaitable(result)
    return result


def _run_awaitable(awaitable) -> Any:
    async def _await():
        return await awaitable

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_await())

    # Called from inside a running loop: finish on a private thread
    outcome = {}

    def _target():
        try:
            outcome['value'] = asyncio.run(_await())
        except BaseException as e:
            outcome['error'] = e

    thread = threading.Thread(target=_target, name="entry-point-runner")
    thread.start()
    thread.join()
    if 'error' in outcome:
        raise outcome['error']
    return outcome.get('value')
