"""
Reconciler - decides and applies create / update / no-op per module.

Decisions compare a module's desired configuration with its cache entry and
the remote snapshot taken at the start of the run. Field updates are keyed
by field api_key and patched in place so remote field ids (and the content
stored in them) survive.
"""

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..definitions import FieldDefinition, ItemTypeDefinition
from ..utils.dato_client import DatoClient
from .cache import CacheEntry, ReconciliationCache
from .results import BuildStatus

logger = logging.getLogger(__name__)

# Field attributes always compared against the remote field
COMPARED_FIELD_ATTRIBUTES = ('label', 'field_type', 'validators', 'position', 'localized', 'hint')
# Compared only when the definition sets them; the CMA fills in defaults otherwise
OPTIONAL_FIELD_ATTRIBUTES = ('appearance', 'default_value')


def values_equal(current: Any, new: Any) -> bool:
    """
    Compare two values for equality, handling common type mismatches.

    Handles:
    - None vs empty string
    - Boolean comparisons
    - Nested dicts and lists, compared structurally
    """
    # Handle None vs empty string
    if current is None and new == '':
        return True
    if current == '' and new is None:
        return True
    if current is None and new is None:
        return True

    # Handle boolean comparisons
    if isinstance(new, bool):
        current = bool(current) if current is not None else False
        return current == new

    # Handle nested structures
    if isinstance(current, dict) and isinstance(new, dict):
        keys = set(current) | set(new)
        return all(values_equal(current.get(k), new.get(k)) for k in keys)
    if isinstance(current, list) and isinstance(new, list):
        return len(current) == len(new) and all(values_equal(a, b) for a, b in zip(current, new))

    # Default comparison
    return current == new


def _digest(data: Any) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(',', ':'), default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def fingerprint(definition: ItemTypeDefinition) -> str:
    """Hash of everything in a definition that affects remote state."""
    return _digest(definition.normalized())


def fingerprint_remote_id(remote_id: str) -> str:
    """Fingerprint for modules that synchronize themselves and return an id."""
    return _digest({'remote_id': remote_id})


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    UNCHANGED = "unchanged"

    @property
    def status(self) -> BuildStatus:
        return {
            Action.CREATE: BuildStatus.CREATED,
            Action.UPDATE: BuildStatus.UPDATED,
            Action.UNCHANGED: BuildStatus.UNCHANGED,
        }[self]


@dataclass(frozen=True)
class Decision:
    key: str
    action: Action
    fingerprint: str
    remote_id: Optional[str] = None
    reason: str = ""


class RemoteState:
    """Snapshot of remote item types, patched as the run changes them."""

    def __init__(self, item_types: Iterable[Dict[str, Any]] = ()):
        self._lock = threading.Lock()
        self._by_id: Dict[str, Dict[str, Any]] = {}
        for item_type in item_types:
            self._by_id[item_type['id']] = dict(item_type)

    @classmethod
    def fetch(cls, client: DatoClient) -> "RemoteState":
        item_types = client.list_item_types()
        logger.info(f"Fetched {len(item_types)} item types from DatoCMS")
        return cls(item_types)

    def __contains__(self, remote_id: Optional[str]) -> bool:
        with self._lock:
            return remote_id in self._by_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)

    def get(self, remote_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            item_type = self._by_id.get(remote_id)
            return dict(item_type) if item_type else None

    def find_by_api_key(self, api_key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for item_type in self._by_id.values():
                if item_type.get('api_key') == api_key:
                    return dict(item_type)
        return None

    def put(self, item_type: Dict[str, Any]) -> None:
        with self._lock:
            merged = dict(self._by_id.get(item_type['id'], {}))
            merged.update(item_type)
            self._by_id[item_type['id']] = merged

    def remove(self, remote_id: str) -> None:
        with self._lock:
            self._by_id.pop(remote_id, None)


def decide(key: str, definition: ItemTypeDefinition, entry: Optional[CacheEntry],
           remote: RemoteState) -> Decision:
    """
    Pure decision for one module.

    An item type that already exists remotely under the same api_key but is
    unknown to the cache is adopted and updated rather than duplicated.
    """
    fp = fingerprint(definition)

    if entry is not None and entry.id in remote:
        if entry.hash == fp:
            return Decision(key, Action.UNCHANGED, fp, entry.id, "fingerprint match")
        return Decision(key, Action.UPDATE, fp, entry.id, "fingerprint changed")

    existing = remote.find_by_api_key(definition.api_key)
    if existing is not None:
        return Decision(key, Action.UPDATE, fp, existing['id'],
                        f"adopting remote item type '{definition.api_key}'")
    if entry is not None:
        return Decision(key, Action.CREATE, fp, None, f"remote item type {entry.id} vanished")
    return Decision(key, Action.CREATE, fp, None, "not in cache")


class Reconciler:
    """Applies decisions to DatoCMS and keeps the remote snapshot current."""

    def __init__(self, client: DatoClient, cache: ReconciliationCache, remote: RemoteState,
                 allow_field_deletion: bool = True):
        self.client = client
        self.cache = cache
        self.remote = remote
        self.allow_field_deletion = allow_field_deletion

    def reconcile(self, key: str, definition: ItemTypeDefinition) -> Decision:
        decision = decide(key, definition, self.cache.get(key), self.remote)
        logger.debug(f"{key}: {decision.action.value} ({decision.reason})")
        return decision

    def apply(self, decision: Decision, definition: ItemTypeDefinition) -> str:
        """Perform the remote calls for a decision and return the item type id."""
        if decision.action is Action.UNCHANGED:
            return decision.remote_id
        if decision.action is Action.CREATE:
            return self._create(definition)
        return self._update(decision.remote_id, definition)

    def _create(self, definition: ItemTypeDefinition) -> str:
        item_type = self.client.create_item_type(definition.item_type_attributes())
        self.remote.put(item_type)
        for field_def in self._ordered_fields(definition):
            self.client.create_field(item_type['id'], field_def.to_attributes())
        logger.info(f'Created {definition.kind} "{definition.name}" (id={item_type["id"]})')
        return item_type['id']

    def _update(self, remote_id: str, definition: ItemTypeDefinition) -> str:
        current = self.remote.get(remote_id) or {}
        desired = definition.item_type_attributes()
        changes = {k: v for k, v in desired.items() if not values_equal(current.get(k), v)}
        if changes:
            logger.debug(f"{definition.kind} {definition.name} updates: {changes}")
            updated = self.client.update_item_type(remote_id, changes)
            self.remote.put(dict(updated, id=remote_id))

        self._sync_fields(remote_id, definition)
        logger.info(f'Updated {definition.kind} "{definition.name}" (id={remote_id})')
        return remote_id

    def _ordered_fields(self, definition: ItemTypeDefinition) -> List[FieldDefinition]:
        return sorted(definition.fields, key=lambda f: (f.position, f.api_key))

    def field_changes(self, remote_field: Dict[str, Any], field_def: FieldDefinition) -> Dict[str, Any]:
        """Attributes of field_def that differ from the remote field."""
        desired = field_def.to_attributes()
        changes = {}
        for attr in COMPARED_FIELD_ATTRIBUTES:
            if not values_equal(remote_field.get(attr), desired.get(attr)):
                changes[attr] = desired.get(attr)
        for attr in OPTIONAL_FIELD_ATTRIBUTES:
            if attr in desired and not values_equal(remote_field.get(attr), desired[attr]):
                changes[attr] = desired[attr]
        return changes

    def _sync_fields(self, item_type_id: str, definition: ItemTypeDefinition) -> None:
        """Create missing fields, patch changed ones, delete removed ones."""
        existing = {f.get('api_key'): f for f in self.client.list_fields(item_type_id)}

        for field_def in self._ordered_fields(definition):
            remote_field = existing.pop(field_def.api_key, None)
            if remote_field is None:
                self.client.create_field(item_type_id, field_def.to_attributes())
                logger.debug(f"{definition.name}: created field {field_def.api_key}")
                continue
            changes = self.field_changes(remote_field, field_def)
            if changes:
                self.client.update_field(remote_field['id'], changes)
                logger.debug(f"{definition.name}: patched field {field_def.api_key}: {sorted(changes)}")

        for api_key, remote_field in existing.items():
            if self.allow_field_deletion:
                self.client.delete_field(remote_field['id'])
                logger.info(f"{definition.name}: deleted field {api_key}")
            else:
                logger.warning(f"{definition.name}: field {api_key} is no longer defined, keeping it")
