"""
Definition modules and their identities.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

from ..definitions import KINDS


@dataclass(frozen=True)
class ModuleKey:
    """Stable identity of a definition module: kind plus name."""
    kind: str
    name: str

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"Unknown module kind '{self.kind}'")

    def __str__(self) -> str:
        return f"{self.kind}:{self.name}"

    @classmethod
    def parse(cls, text: str) -> "ModuleKey":
        """Parse "block:Name" / "model:Name"."""
        kind, sep, name = text.partition(':')
        if not sep or not name:
            raise ValueError(f"Invalid module key '{text}'")
        return cls(kind, name)


@dataclass
class DefinitionModule:
    """A discovered definition file and its entry point."""
    key: ModuleKey
    path: str
    index: int
    entry_point: Callable[..., Any] = field(repr=False)

    @property
    def kind(self) -> str:
        return self.key.kind

    @property
    def name(self) -> str:
        return self.key.name
