"""Shared fixtures for build tests.

FakeDatoClient keeps item types and fields in memory and counts every
mutating call, so tests can assert that a run touched nothing remotely.
"""

import itertools
import textwrap
import threading
from pathlib import Path
from typing import Any, Dict, List

import pytest

from dato_schema_sync.config import BuildSettings, Config, DatoSettings
from dato_schema_sync.exceptions import NotFoundError, UniquenessError


class FakeDatoClient:
    """In-memory stand-in for DatoClient."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.item_types: Dict[str, Dict[str, Any]] = {}
        self.fields: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.connected = True

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def _record(self, *call) -> None:
        self.calls.append(call)

    @property
    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] not in ('connect', 'list_item_types', 'list_fields')]

    def connect(self) -> bool:
        self._record('connect')
        return self.connected

    def list_item_types(self) -> List[Dict[str, Any]]:
        with self._lock:
            self._record('list_item_types')
            return [dict(t) for t in self.item_types.values()]

    def create_item_type(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._record('create_item_type', attributes['api_key'])
            if any(t['api_key'] == attributes['api_key'] for t in self.item_types.values()):
                raise UniquenessError("api_key taken", status_code=422,
                                      code='INVALID_FIELD', inner_code='VALIDATION_UNIQUENESS')
            item_type = dict(attributes, id=self._next_id('it'))
            self.item_types[item_type['id']] = item_type
            return dict(item_type)

    def update_item_type(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._record('update_item_type', item_type_id)
            if item_type_id not in self.item_types:
                raise NotFoundError("item type not found", status_code=404)
            self.item_types[item_type_id].update(attributes)
            return dict(self.item_types[item_type_id])

    def delete_item_type(self, item_type_id: str) -> None:
        with self._lock:
            self._record('delete_item_type', item_type_id)
            if self.item_types.pop(item_type_id, None) is None:
                raise NotFoundError("item type not found", status_code=404)
            for field_id in [k for k, f in self.fields.items() if f['item_type'] == item_type_id]:
                del self.fields[field_id]

    def list_fields(self, item_type_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._record('list_fields', item_type_id)
            return [dict(f) for f in self.fields.values() if f['item_type'] == item_type_id]

    def create_field(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._record('create_field', item_type_id, attributes['api_key'])
            field = dict(attributes, id=self._next_id('f'), item_type=item_type_id)
            self.fields[field['id']] = field
            return dict(field)

    def update_field(self, field_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._record('update_field', field_id, tuple(sorted(attributes)))
            self.fields[field_id].update(attributes)
            return dict(self.fields[field_id])

    def delete_field(self, field_id: str) -> None:
        with self._lock:
            self._record('delete_field', field_id)
            del self.fields[field_id]

    # Helpers for assertions

    def item_type_by_api_key(self, api_key: str) -> Dict[str, Any]:
        return next(t for t in self.item_types.values() if t['api_key'] == api_key)

    def field(self, item_type_id: str, api_key: str) -> Dict[str, Any]:
        return next(f for f in self.fields.values()
                    if f['item_type'] == item_type_id and f['api_key'] == api_key)


class Project:
    """A temporary definitions repository."""

    def __init__(self, root: Path):
        self.root = root
        self.blocks = root / "datocms" / "blocks"
        self.models = root / "datocms" / "models"
        self.cache_path = root / ".dato-schema-sync" / "cache.json"
        self.blocks.mkdir(parents=True)
        self.models.mkdir(parents=True)

    def write(self, kind: str, name: str, source: str) -> Path:
        directory = self.blocks if kind == 'block' else self.models
        path = directory / f"{name}.py"
        path.write_text(textwrap.dedent(source))
        return path

    def block(self, name: str, source: str) -> Path:
        return self.write('block', name, source)

    def model(self, name: str, source: str) -> Path:
        return self.write('model', name, source)

    def remove(self, kind: str, name: str) -> None:
        directory = self.blocks if kind == 'block' else self.models
        (directory / f"{name}.py").unlink()

    def config(self, **build_overrides) -> Config:
        build = BuildSettings(
            blocks_path=str(self.blocks),
            models_path=str(self.models),
            cache_path=str(self.cache_path),
            concurrency=2,
            auto_concurrency=False,
            no_cache=False,
            skip_deletion=False,
            skip_deletion_confirmation=False,
        )
        for key, value in build_overrides.items():
            setattr(build, key, value)
        return Config(dato=DatoSettings(api_token="test-token"), build=build)


AUTHOR_SOURCE = """
    from dato_schema_sync import ItemTypeDefinition


    def build(ctx):
        return ItemTypeDefinition.model("Author").add_string("Name", validators={"required": {}})
"""

ARTICLE_SOURCE = """
    from dato_schema_sync import ItemTypeDefinition


    def build(ctx):
        return (
            ItemTypeDefinition.model("Article")
            .add_string("Title")
            .add_link("Author", item_types=[ctx.resolve_model("Author")])
        )
"""


@pytest.fixture
def project(tmp_path):
    return Project(tmp_path)


@pytest.fixture
def client():
    return FakeDatoClient()
