"""
Whitelist registry: which fields, associations and remote collections of a resource type may be queried.

Registration happens while the app is being set up (single threaded), afterwards the registry is only read.
Lookups for resource types that were never registered fail closed: every name is reported as ``NameKind.NONE``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable

import refinery
from .errors import WhitelistRejection


class NameKind(str, Enum):
    FIELD = "field"
    ASSOCIATION = "association"
    REMOTE = "remote"
    NONE = "none"


@dataclass(frozen=True)
class WhitelistEntry:
    """Declared names of a single resource type."""

    fields: FrozenSet[str] = field(default_factory=frozenset)
    associations: FrozenSet[str] = field(default_factory=frozenset)
    remotes: FrozenSet[str] = field(default_factory=frozenset)

    def merge(self, fields: Iterable[str] = (), associations: Iterable[str] = (), remotes: Iterable[str] = ()) -> "WhitelistEntry":
        """Return a new entry holding the union of both declarations."""
        return WhitelistEntry(
            fields=self.fields | frozenset(fields),
            associations=self.associations | frozenset(associations),
            remotes=self.remotes | frozenset(remotes),
        )

    def kind(self, name: str) -> NameKind:
        # a name declared in more than one set resolves in this order
        if name in self.fields:
            return NameKind.FIELD
        if name in self.associations:
            return NameKind.ASSOCIATION
        if name in self.remotes:
            return NameKind.REMOTE
        return NameKind.NONE


class WhitelistRegistry:
    """
    Per resource type declaration of the queryable names.
    Resource types are the mapped model classes.
    """

    def __init__(self) -> None:
        self._entries: Dict[Any, WhitelistEntry] = {}

    def register(self, resource_type: Any, fields: Iterable[str] = (), associations: Iterable[str] = (), remotes: Iterable[str] = ()) -> WhitelistEntry:
        """
        Declare the queryable names of `resource_type`.
        Registering the same type again merges the declarations.

        :param resource_type: model class
        :param fields: scalar field names
        :param associations: association (relationship) names
        :param remotes: remote collection names
        :return: the resulting whitelist entry
        """
        entry = self._entries.get(resource_type, WhitelistEntry()).merge(fields, associations, remotes)
        self._entries[resource_type] = entry
        refinery.log.debug(
            f"Whitelisted {getattr(resource_type, '__name__', resource_type)}: "
            f"fields={sorted(entry.fields)} associations={sorted(entry.associations)} remotes={sorted(entry.remotes)}"
        )
        return entry

    def is_allowed(self, resource_type: Any, name: str) -> NameKind:
        """
        :param resource_type: model class
        :param name: parameter name
        :return: the kind of the name, NameKind.NONE if it isn't declared
        """
        entry = self._entries.get(resource_type)
        if entry is None:
            return NameKind.NONE
        return entry.kind(name)

    def require(self, resource_type: Any, name: str, *kinds: NameKind) -> NameKind:
        """
        Like is_allowed, but raises WhitelistRejection when the name isn't declared as one of `kinds`
        """
        kind = self.is_allowed(resource_type, name)
        if kind is NameKind.NONE or (kinds and kind not in kinds):
            raise WhitelistRejection(resource_type, name)
        return kind



# process wide registry, written while the routes are exposed
registry = WhitelistRegistry()


def register(resource_type, fields=(), associations=(), remotes=()) -> WhitelistEntry:
    return registry.register(resource_type, fields, associations, remotes)


def is_allowed(resource_type, name) -> NameKind:
    return registry.is_allowed(resource_type, name)
