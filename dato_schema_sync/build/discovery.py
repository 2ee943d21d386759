"""
Module Store - discovers and loads definition modules.

Blocks live under blocks_path and models under models_path; every Python
file is one module named after its file stem.
"""

import importlib.util
import inspect
import logging
import os
import re
from pathlib import Path
from typing import Callable, Dict, List

from ..definitions import BLOCK, MODEL
from ..exceptions import ModuleLoadError
from .modules import DefinitionModule, ModuleKey

logger = logging.getLogger(__name__)

ENTRY_POINT_NAME = 'build'


def find_entry_point(module, path: str) -> Callable:
    """
    Return the single entry point of a loaded definition module.

    A callable named ``build`` wins; otherwise the module must define
    exactly one public function of its own.
    """
    if hasattr(module, ENTRY_POINT_NAME):
        entry = getattr(module, ENTRY_POINT_NAME)
        if not callable(entry):
            raise ModuleLoadError(path, f"'{ENTRY_POINT_NAME}' is not a function")
        return entry

    candidates = [
        obj for attr, obj in vars(module).items()
        if not attr.startswith('_')
        and inspect.isfunction(obj)
        and obj.__module__ == module.__name__
    ]
    if not candidates:
        raise ModuleLoadError(path, "does not define an entry point function")
    if len(candidates) > 1:
        names = ', '.join(sorted(f.__name__ for f in candidates))
        raise ModuleLoadError(
            path, f"defines several functions ({names}); name the entry point '{ENTRY_POINT_NAME}'"
        )
    return candidates[0]


class ModuleStore:
    """Discovers definition modules under the configured roots."""

    def __init__(self, blocks_path: str, models_path: str):
        self.roots = {BLOCK: blocks_path, MODEL: models_path}

    def _scan(self, root: str) -> List[Path]:
        base = Path(root)
        if not base.is_dir():
            return []
        return sorted(
            (p for p in base.rglob('*.py') if not p.name.startswith('_')),
            key=lambda p: p.relative_to(base).as_posix(),
        )

    def _load(self, key: ModuleKey, path: Path) -> Callable:
        module_name = "_dato_definition_" + re.sub(r'\W', '_', f"{key.kind}_{key.name}")
        spec = importlib.util.spec_from_file_location(module_name, str(path))
        if spec is None or spec.loader is None:
            raise ModuleLoadError(str(path), "cannot be imported")
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise ModuleLoadError(str(path), f"import failed: {e}") from e
        return find_entry_point(module, str(path))

    def discover(self) -> List[DefinitionModule]:
        """
        Find and load every definition module, blocks first.

        Raises ModuleLoadError on the first invalid file; nothing remote has
        been touched at that point.
        """
        seen: Dict[ModuleKey, DefinitionModule] = {}
        discovered: List[DefinitionModule] = []

        for kind in (BLOCK, MODEL):
            root = self.roots[kind]
            files = self._scan(root)
            if not files:
                logger.warning(f"No {kind} files found in '{root}'")
                continue

            for path in files:
                key = ModuleKey(kind, path.stem)
                if key in seen:
                    raise ModuleLoadError(
                        str(path), f"duplicate {kind} name '{key.name}' (also {seen[key].path})"
                    )
                entry = self._load(key, path)
                module = DefinitionModule(
                    key=key, path=os.path.abspath(path), index=len(discovered), entry_point=entry
                )
                seen[key] = module
                discovered.append(module)
                logger.debug(f"Discovered {key} at {module.path}")

        blocks = sum(1 for m in discovered if m.kind == BLOCK)
        logger.info(f"Discovered {blocks} blocks and {len(discovered) - blocks} models")
        return discovered
