# src/neoquery/config.py
"""
Connection configuration.

Holds the settings a GraphConnection needs to reach a Neo4j server. Values
can come straight from a framework-style configuration mapping via
``ConnectionConfig.from_mapping``.
"""

from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConnectionConfig(BaseModel):
    """Settings for a single Neo4j connection."""

    scheme: str = Field(default="bolt", min_length=1, description="URI scheme (bolt, neo4j, neo4j+s, ...)")
    host: str = Field(default="localhost", min_length=1, description="Server host name")
    port: int = Field(default=7687, ge=1, le=65535, description="Server port")
    username: Optional[str] = Field(default=None, description="Basic auth user")
    password: Optional[str] = Field(default=None, description="Basic auth password")
    database: str = Field(default="neo4j", min_length=1, description="Database used for sessions")
    name: Optional[str] = Field(default=None, description="Logical connection name")
    driver_config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Extra keyword arguments handed to the Neo4j driver"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
        json_schema_extra={
            "example": {
                "scheme": "bolt",
                "host": "localhost",
                "port": 7687,
                "username": "neo4j",
                "password": "secret",
            }
        }
    )

    @field_validator("scheme")
    @classmethod
    def normalize_scheme(cls, v):
        """Strip a trailing '://' and lowercase the scheme."""
        return v.strip().rstrip(":/").lower()

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]] = None) -> "ConnectionConfig":
        """
        Build a config from a plain mapping, ignoring unknown keys.

        Args:
            mapping: Framework style configuration, e.g. ``{"host": "db", "port": 7687}``

        Returns:
            A validated ConnectionConfig
        """
        known = {key: value for key, value in (mapping or {}).items() if key in cls.model_fields}
        return cls(**known)

    @property
    def uri(self) -> str:
        """The driver URI built from scheme, host and port."""
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def is_secured(self) -> bool:
        """Whether credentials are configured."""
        return self.username is not None and self.password is not None

    @property
    def auth(self) -> Optional[Tuple[str, str]]:
        """A (username, password) tuple, or None when authentication is disabled."""
        if self.username and self.password:
            return (self.username, self.password)
        return None
