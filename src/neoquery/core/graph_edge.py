from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Dict, Any, Optional


class GraphEdge(BaseModel):
    """A relationship read back from the database."""

    id: Optional[int] = Field(default=None, description="Intrinsic relationship identity")
    start_id: Optional[int] = Field(default=None, description="Identity of the start node")
    end_id: Optional[int] = Field(default=None, description="Identity of the end node")
    relationship_type: str = Field(
        ...,
        min_length=1,
        description="Relationship type, e.g. POSTED"
    )
    properties: Dict[str, Any] = Field(
        default_factory=dict,
        description="Relationship properties"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "id": 7,
                "start_id": 12,
                "end_id": 40,
                "relationship_type": "POSTED",
                "properties": {
                    "since": "2024-01-15"
                }
            }
        }
    )

    @field_validator('relationship_type')
    @classmethod
    def validate_relationship_type(cls, v):
        # The driver never returns an untyped relationship
        if not v.strip():
            raise ValueError("A relationship needs a type")
        return v.strip()

    @field_validator('properties')
    @classmethod
    def validate_properties(cls, v):
        # Cypher property keys are always strings
        if not all(isinstance(k, str) for k in v.keys()):
            raise ValueError("Property keys must be strings")
        return v

    def get_property(self, key: str, default: Any = None) -> Any:
        """The property stored under ``key``, or ``default`` when it is absent."""
        return self.properties.get(key, default)

    @property
    def property_count(self) -> int:
        return len(self.properties)

    @property
    def is_self_loop(self) -> bool:
        """Check if the relationship starts and ends on the same node."""
        return self.start_id is not None and self.start_id == self.end_id

    def connects(self, node_id: int) -> bool:
        return node_id in (self.start_id, self.end_id)
