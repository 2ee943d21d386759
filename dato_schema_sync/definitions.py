"""
Item type definitions returned by definition modules.

A definition module's entry point builds an ItemTypeDefinition and returns
it; the orchestrator turns it into CMA calls. Only the generic field shape
is modelled here, with a handful of convenience helpers for the common
field types.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .exceptions import DefinitionError

BLOCK = 'block'
MODEL = 'model'
KINDS = (BLOCK, MODEL)

# Item type attributes with the values the CMA assumes when they are omitted
ITEM_TYPE_DEFAULTS: Dict[str, Any] = {
    'hint': None,
    'sortable': False,
    'tree': False,
    'singleton': False,
    'draft_mode_active': False,
    'all_locales_required': True,
    'collection_appearance': 'table',
}


def generate_api_key(name: str, suffix: Optional[str] = None) -> str:
    """
    Derive a CMA api_key from a human readable name.

    "Hero Banner 2" -> "hero_banner2", with an optional "_<suffix>".
    """
    key = name.lower()
    key = re.sub(r'[^a-z0-9_]', '_', key)
    key = re.sub(r'_{2,}', '_', key)
    key = re.sub(r'_([0-9])', r'\1', key)
    key = key.strip('_')
    if suffix:
        key = f"{key}_{suffix}"
    return key


@dataclass
class FieldDefinition:
    """A single field of an item type."""
    label: str
    field_type: str
    api_key: str
    position: int
    validators: Dict[str, Any] = field(default_factory=dict)
    appearance: Optional[Dict[str, Any]] = None
    hint: Optional[str] = None
    localized: bool = False
    default_value: Any = None

    def to_attributes(self) -> Dict[str, Any]:
        """Attributes sent to the CMA when creating this field."""
        attrs = {
            'label': self.label,
            'field_type': self.field_type,
            'api_key': self.api_key,
            'position': self.position,
            'validators': self.validators,
            'hint': self.hint,
            'localized': self.localized,
        }
        if self.appearance is not None:
            attrs['appearance'] = self.appearance
        if self.default_value is not None:
            attrs['default_value'] = self.default_value
        return attrs


class ItemTypeDefinition:
    """
    Desired configuration of one block or model.

    Fields keep their declaration order; a field without an explicit
    position gets the next free slot (1-based), as the dashboard does.
    """

    def __init__(self, kind: str, name: str, api_key: Optional[str] = None,
                 hint: Optional[str] = None,
                 attributes: Optional[Dict[str, Any]] = None):
        if kind not in KINDS:
            raise DefinitionError(f"Unknown item type kind '{kind}'")
        if not name:
            raise DefinitionError("Item type name must not be empty")
        self.kind = kind
        self.name = name
        self.api_key = api_key or generate_api_key(name, BLOCK if kind == BLOCK else None)
        self.hint = hint
        self.attributes: Dict[str, Any] = dict(attributes or {})
        self.fields: List[FieldDefinition] = []

    @classmethod
    def block(cls, name: str, **kwargs) -> "ItemTypeDefinition":
        return cls(BLOCK, name, **kwargs)

    @classmethod
    def model(cls, name: str, **kwargs) -> "ItemTypeDefinition":
        return cls(MODEL, name, **kwargs)

    def __repr__(self) -> str:
        return f"ItemTypeDefinition({self.kind}:{self.name}, fields={len(self.fields)})"

    def add_field(self, label: str, field_type: str, api_key: Optional[str] = None,
                  validators: Optional[Dict[str, Any]] = None,
                  appearance: Optional[Dict[str, Any]] = None,
                  position: Optional[int] = None, hint: Optional[str] = None,
                  localized: bool = False,
                  default_value: Any = None) -> "ItemTypeDefinition":
        key = api_key or generate_api_key(label)
        if any(f.api_key == key for f in self.fields):
            raise DefinitionError(f'Field with api_key "{key}" already exists on {self.name}.')
        self.fields.append(FieldDefinition(
            label=label,
            field_type=field_type,
            api_key=key,
            position=position if position is not None else len(self.fields) + 1,
            validators=dict(validators or {}),
            appearance=appearance,
            hint=hint,
            localized=localized,
            default_value=default_value,
        ))
        return self

    # Convenience helpers for the common field types

    def add_string(self, label: str, **kwargs) -> "ItemTypeDefinition":
        return self.add_field(label, 'string', **kwargs)

    def add_text(self, label: str, **kwargs) -> "ItemTypeDefinition":
        return self.add_field(label, 'text', **kwargs)

    def add_boolean(self, label: str, **kwargs) -> "ItemTypeDefinition":
        return self.add_field(label, 'boolean', **kwargs)

    def add_integer(self, label: str, **kwargs) -> "ItemTypeDefinition":
        return self.add_field(label, 'integer', **kwargs)

    def add_link(self, label: str, item_types: List[str], **kwargs) -> "ItemTypeDefinition":
        """Single reference to a record of one of the given models."""
        validators = dict(kwargs.pop('validators', None) or {})
        validators['item_item_type'] = {'item_types': list(item_types)}
        return self.add_field(label, 'link', validators=validators, **kwargs)

    def add_links(self, label: str, item_types: List[str], **kwargs) -> "ItemTypeDefinition":
        """Multiple references to records of the given models."""
        validators = dict(kwargs.pop('validators', None) or {})
        validators['items_item_type'] = {'item_types': list(item_types)}
        return self.add_field(label, 'links', validators=validators, **kwargs)

    def add_modular_content(self, label: str, blocks: List[str], **kwargs) -> "ItemTypeDefinition":
        """Modular content field accepting the given blocks."""
        validators = dict(kwargs.pop('validators', None) or {})
        validators['rich_text_blocks'] = {'item_types': list(blocks)}
        return self.add_field(label, 'rich_text', validators=validators, **kwargs)

    def item_type_attributes(self) -> Dict[str, Any]:
        """Attributes sent to the CMA for the item type itself."""
        attrs: Dict[str, Any] = {
            'name': self.name,
            'api_key': self.api_key,
            'modular_block': self.kind == BLOCK,
        }
        if self.hint is not None:
            attrs['hint'] = self.hint
        attrs.update(self.attributes)
        return attrs

    def normalized(self) -> Dict[str, Any]:
        """
        Canonical form used for fingerprinting.

        Defaults are expanded so that omitting an attribute and spelling out
        its default produce the same form. Fields are ordered by position,
        then api_key, so declaration order only matters through position.
        """
        item_type = dict(ITEM_TYPE_DEFAULTS)
        item_type.update(self.item_type_attributes())
        fields = []
        for f in sorted(self.fields, key=lambda f: (f.position, f.api_key)):
            attrs = f.to_attributes()
            attrs.setdefault('appearance', None)
            attrs.setdefault('default_value', None)
            fields.append(attrs)
        return {'kind': self.kind, 'item_type': item_type, 'fields': fields}
