"""
Lazy entity references.

``Unloaded`` is an explicit stand-in for an entity that has not been read
yet; forcing its loader yields ``Loaded``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Type, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Loaded(Generic[T]):
    entity: T

    @property
    def entity_type(self) -> Type:
        return type(self.entity)

    @property
    def id(self):
        return getattr(self.entity, "id", None)


@dataclass(frozen=True)
class Unloaded(Generic[T]):
    entity_type: Type[T]
    id: Any
    loader: Callable[[Type[T], Any], Optional[T]]

    def load(self) -> Optional[Loaded[T]]:
        entity = self.loader(self.entity_type, self.id)
        if entity is None:
            return None
        return Loaded(entity)

    def __repr__(self) -> str:
        return f"<Unloaded {self.entity_type.__name__} id={self.id!r}>"


Reference = Union[Loaded[T], Unloaded[T]]


def is_reference(value: Any) -> bool:
    return isinstance(value, (Loaded, Unloaded))
