from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Dict, Any, List, Optional


class GraphNode(BaseModel):
    """
    A node read back from the database, with its identity, labels and properties.
    Related records attached during eager loading live in ``relations``.
    """

    id: Optional[int] = Field(default=None, description="Intrinsic node identity, i.e. id(n)")
    labels: List[str] = Field(default_factory=list, description="Node labels")
    properties: Dict[str, Any] = Field(
        default_factory=dict,
        description="Stored node properties"
    )
    relations: Dict[str, Any] = Field(
        default_factory=dict,
        description="Eagerly loaded related records keyed by relation name"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "id": 12,
                "labels": ["User"],
                "properties": {
                    "name": "Alice",
                    "age": 30,
                    "active": True
                }
            }
        }
    )

    @field_validator('labels', mode='before')
    @classmethod
    def coerce_labels(cls, v):
        """Accept any iterable of labels (the driver hands out frozensets)."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return sorted(v) if isinstance(v, (set, frozenset)) else list(v)

    @field_validator('properties')
    @classmethod
    def validate_properties(cls, v):
        # Cypher property keys are always strings
        if not all(isinstance(k, str) for k in v.keys()):
            raise ValueError("Property keys must be strings")
        return v

    @property
    def label(self) -> Optional[str]:
        """The first label, or None for an unlabeled node."""
        return self.labels[0] if self.labels else None

    def has_label(self, label: str) -> bool:
        return label in self.labels

    def get_property(self, key: str, default: Any = None) -> Any:
        """The property stored under ``key``, or ``default`` when it is absent."""
        return self.properties.get(key, default)

    def has_property(self, key: str) -> bool:
        return key in self.properties

    @property
    def property_count(self) -> int:
        return len(self.properties)

    def set_relation(self, name: str, value: Any) -> None:
        """Attach an eagerly loaded relation."""
        self.relations[name] = value

    def get_relation(self, name: str, default: Any = None) -> Any:
        return self.relations.get(name, default)

    def __getitem__(self, key: str) -> Any:
        return self.properties[key]
