# src/neoquery/core/bindings.py
"""
Binding table for compiled Cypher statements.

Parameter values are stored under logical names and grouped into buckets by
the clause that produced them. Names are unique across the whole table, so
the flattened parameter set never loses a value to a collision.
"""

from __future__ import annotations

from typing import Any, Container, Dict, Iterator, Mapping, Tuple

from neoquery.exceptions import InvalidBindingBucketError


BINDING_BUCKETS: Tuple[str, ...] = ("matches", "select", "where", "having", "order")


class BindingTable:
    """
    Named parameter values partitioned into clause buckets.

    Example:
        ```python
        table = BindingTable()
        table.bind("age", 18)        # -> "age"
        table.bind("age", 65)        # -> "age_2"
        table.flatten()              # {"age": 18, "age_2": 65}
        ```
    """

    def __init__(self) -> None:
        self._buckets: Dict[str, Dict[str, Any]] = {name: {} for name in BINDING_BUCKETS}

    # =============================================================================
    # BUCKET ACCESS
    # =============================================================================

    def _get_bucket(self, bucket: str) -> Dict[str, Any]:
        if bucket not in self._buckets:
            raise InvalidBindingBucketError(bucket)
        return self._buckets[bucket]

    def bucket(self, bucket: str) -> Dict[str, Any]:
        """Return a copy of one bucket."""
        return dict(self._get_bucket(bucket))

    def add(self, name: str, value: Any, bucket: str = "where") -> BindingTable:
        """
        Store a value under an exact name.

        Args:
            name: Binding name as it will appear in the statement
            value: Parameter value
            bucket: Clause bucket the value belongs to

        Raises:
            InvalidBindingBucketError: If the bucket is unknown
        """
        self._get_bucket(bucket)[name] = value
        return self

    def bind(self, base: str, value: Any, bucket: str = "where") -> str:
        """
        Store a value under the first free name derived from ``base``.

        Returns:
            The allocated binding name
        """
        target = self._get_bucket(bucket)
        name = self.unique_name(base)
        target[name] = value
        return name

    def unique_name(self, base: str, reserved: Container[str] = ()) -> str:
        """Return ``base`` or the first of ``base_2``, ``base_3``, ... not yet taken or reserved."""
        if base not in self and base not in reserved:
            return base

        counter = 2
        while f"{base}_{counter}" in self or f"{base}_{counter}" in reserved:
            counter += 1
        return f"{base}_{counter}"

    def replace(self, bucket: str, values: Mapping[str, Any]) -> None:
        """Swap the whole content of a bucket."""
        self._get_bucket(bucket)
        self._buckets[bucket] = dict(values)

    def clear(self, bucket: str) -> None:
        """Empty a single bucket."""
        self._get_bucket(bucket).clear()

    # =============================================================================
    # SNAPSHOTS
    # =============================================================================

    def backup(self, *buckets: str) -> Dict[str, Dict[str, Any]]:
        """Empty the given buckets and return their previous content."""
        snapshot = {}
        for name in buckets:
            snapshot[name] = self.bucket(name)
            self.clear(name)
        return snapshot

    def restore(self, snapshot: Mapping[str, Mapping[str, Any]]) -> None:
        """Put back buckets saved with ``backup``."""
        for name, values in snapshot.items():
            self.replace(name, values)

    def absorb(self, other: BindingTable) -> Dict[str, str]:
        """
        Move every binding of another table into this one.

        Names already taken here get the next free suffix, skipping names
        ``other`` still holds.

        Returns:
            The renamed bindings as ``{old_name: new_name}``
        """
        if other is self:
            return {}

        renames: Dict[str, str] = {}
        for name in BINDING_BUCKETS:
            for key, value in other._buckets[name].items():
                if key in self:
                    renames[key] = self.unique_name(key, reserved=other)
                self._buckets[name][renames.get(key, key)] = value
        return renames

    def copy(self) -> BindingTable:
        clone = BindingTable()
        for name in BINDING_BUCKETS:
            clone._buckets[name] = dict(self._buckets[name])
        return clone

    # =============================================================================
    # FLATTENING
    # =============================================================================

    def flatten(self) -> Dict[str, Any]:
        """Merge all buckets, in bucket order, into a single parameter dict."""
        flat: Dict[str, Any] = {}
        for name in BINDING_BUCKETS:
            flat.update(self._buckets[name])
        return flat

    def get(self, name: str, default: Any = None) -> Any:
        for values in self._buckets.values():
            if name in values:
                return values[name]
        return default

    def __contains__(self, name: object) -> bool:
        return any(name in values for values in self._buckets.values())

    def __len__(self) -> int:
        return sum(len(values) for values in self._buckets.values())

    def __iter__(self) -> Iterator[str]:
        return iter(self.flatten())

    def __repr__(self) -> str:
        filled = {name: values for name, values in self._buckets.items() if values}
        return f"BindingTable({filled})"
