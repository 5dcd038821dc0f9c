# src/neoquery/orm/entities.py
"""
GraphEntity - typed records hydrated from query results.

Entity classes register themselves under their labels, which is how nodes
returned by a morph (polymorphic) relation match are turned into the right
class once their labels are known.
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Iterable, List, Optional, Set, Tuple, Type, TypeVar, Union
import itertools
import weakref

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from neoquery.core.graph_node import GraphNode


# Type variable for GraphEntity subclasses
EntityType = TypeVar('EntityType', bound='GraphEntity')

_registration_order = itertools.count()


class GraphEntityConfig:
    """Configuration for GraphEntity classes."""

    def __init__(self, labels: Optional[Iterable[str]] = None):
        self.labels: Tuple[str, ...] = tuple(labels or ())


class GraphEntityMeta(type(BaseModel)):
    """
    Metaclass registering every GraphEntity subclass with its labels.

    The label defaults to the class name and can be overridden with the
    ``graph_entity`` decorator.
    """

    def __new__(
        mcs,
        name: str,
        bases: tuple,
        namespace: Dict[str, Any],
        **kwargs: Any
    ) -> GraphEntityMeta:

        entity_config = namespace.pop('_entity_config', None)
        if entity_config is None:
            entity_config = GraphEntityConfig(labels=[name])

        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the base GraphEntity class
        if name == 'GraphEntity':
            return cls

        cls._entity_config = entity_config
        cls._registered_at = next(_registration_order)
        GraphEntity._entity_registry.add(cls)

        return cls


class GraphEntity(BaseModel, metaclass=GraphEntityMeta):
    """
    Base class for typed node records.

    Declared fields are validated from the node properties; undeclared
    properties are kept as extra attributes.

    Example:
        ```python
        class User(GraphEntity):
            name: str
            age: int = 0

        users = await User.query(connection).where("age", ">", 18).get()
        ```
    """

    id: Optional[int] = Field(
        default=None,
        description="Intrinsic node identity, None until persisted"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        extra='allow',
        arbitrary_types_allowed=True,
    )

    _entity_registry: ClassVar[weakref.WeakSet] = weakref.WeakSet()
    _entity_config: ClassVar[GraphEntityConfig]
    _registered_at: ClassVar[int] = 0

    _relations: Dict[str, Any] = PrivateAttr(default_factory=dict)

    # =============================================================================
    # CONVERSION
    # =============================================================================

    @classmethod
    def get_labels(cls) -> Tuple[str, ...]:
        """Labels this entity is stored under."""
        return cls._entity_config.labels

    @classmethod
    def from_node(cls: Type[EntityType], node: GraphNode) -> EntityType:
        """Create an entity from a reconstituted node, carrying its relations over."""
        data = dict(node.properties)
        # The identity wins over a stored property that happens to be called "id".
        data['id'] = node.id

        entity = cls.model_validate(data)
        entity._relations = dict(node.relations)
        return entity

    def to_properties(self) -> Dict[str, Any]:
        """Properties to store on the node (the identity is not a property)."""
        return self.model_dump(exclude={'id'})

    def set_relation(self, name: str, value: Any) -> None:
        self._relations[name] = value

    def get_relation(self, name: str, default: Any = None) -> Any:
        return self._relations.get(name, default)

    @property
    def relations(self) -> Dict[str, Any]:
        return dict(self._relations)

    # =============================================================================
    # QUERIES
    # =============================================================================

    @classmethod
    def query(cls, connection):
        """A builder targeting this entity's labels, hydrating results into it."""
        return connection.table(cls)

    @classmethod
    async def find(cls: Type[EntityType], connection, entity_id: int) -> Optional[EntityType]:
        return await cls.query(connection).find(entity_id)

    @classmethod
    async def create(cls: Type[EntityType], connection, **kwargs: Any) -> EntityType:
        """
        Validate, store and return a new entity.

        Returns:
            The entity with its identity set
        """
        entity = cls(**kwargs)
        entity.id = await cls.query(connection).insert_get_id(entity.to_properties())
        return entity

    def __repr__(self) -> str:
        status = "persisted" if self.id is not None else "new"
        return f"{self.__class__.__name__}(id={self.id!r} ({status}))"


# =============================================================================
# DECORATOR FUNCTION
# =============================================================================

def graph_entity(
    cls: Optional[Type] = None,
    *,
    label: Optional[str] = None,
    labels: Optional[Iterable[str]] = None,
) -> Union[Type[GraphEntity], Any]:
    """
    Override the labels of a graph entity.

    Args:
        cls: The class being decorated
        label: A single label replacing the class name
        labels: Several labels, e.g. ``["User", "Admin"]``

    Example:
        ```python
        @graph_entity(labels=["User", "Admin"])
        class Admin(GraphEntity):
            name: str
        ```
    """
    def decorator(target_cls: Type) -> Type:
        if not issubclass(target_cls, GraphEntity):
            raise TypeError("@graph_entity can only be applied to GraphEntity subclasses")

        resolved = list(labels) if labels else [label or target_cls.__name__]
        target_cls._entity_config = GraphEntityConfig(labels=resolved)

        return target_cls

    if cls is None:
        return decorator
    else:
        return decorator(cls)


# =============================================================================
# REGISTRY FUNCTIONS
# =============================================================================

def get_entity_classes() -> Set[Type[GraphEntity]]:
    """Get all registered GraphEntity classes."""
    return set(GraphEntity._entity_registry)


def _registered_entities() -> List[Type[GraphEntity]]:
    return sorted(GraphEntity._entity_registry, key=lambda entity_class: entity_class._registered_at)


def get_entity_by_label(label: str) -> Optional[Type[GraphEntity]]:
    """
    Get entity class by its graph label.

    A class labelled with ``label`` alone wins over classes carrying it among
    other labels; otherwise the earliest registered class is used.
    """
    candidates = [entity_class for entity_class in _registered_entities() if label in entity_class.get_labels()]
    for entity_class in candidates:
        if tuple(entity_class.get_labels()) == (label,):
            return entity_class
    return candidates[0] if candidates else None


def get_entity_by_labels(labels: Iterable[str]) -> Optional[Type[GraphEntity]]:
    """
    Get the entity class matching a node's labels.

    An exact label set wins; otherwise the first label with a registered
    class decides.
    """
    labels = tuple(labels)
    if not labels:
        return None

    wanted = set(labels)
    for entity_class in _registered_entities():
        if set(entity_class.get_labels()) == wanted:
            return entity_class

    for label in labels:
        entity_class = get_entity_by_label(label)
        if entity_class is not None:
            return entity_class
    return None
