"""Resource configuration.

A ResourceConfig declares how a model is exposed: which actions are enabled,
the names used in urls and response roots, the primary key used to look up
instances and the whitelisted fields, associations and remote collections.

Actions are disabled unless they're listed, a disabled action gets no route.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from sqlalchemy import inspect as sqla_inspect

import refinery
from .associations import Remote
from .errors import SchemaMismatchError
from .plan import primary_key_names

INDEX = "index"
CREATE = "create"
SHOW = "show"
UPDATE = "update"
DESTROY = "destroy"
ASSOCIATED = "associated"
REMOTED = "remoted"
API_ACTIONS = (INDEX, CREATE, SHOW, UPDATE, DESTROY, ASSOCIATED, REMOTED)
ALL = "all"


def snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _actions(actions: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    if actions is None:
        return ()
    if isinstance(actions, str):
        actions = [actions]
    result = []
    for action in actions:
        if action == ALL:
            return API_ACTIONS
        if action not in API_ACTIONS:
            refinery.log.warning(f'Ignoring unknown action "{action}", valid actions: {", ".join(API_ACTIONS)}')
            continue
        if action not in result:
            result.append(action)
    return tuple(result)


@dataclass(frozen=True)
class ResourceConfig:
    """Configuration for a single exposed model.

    :param model: mapped model class (the resource type)
    :param actions: enabled actions, a list of API_ACTIONS or "all"
    :param collection_name: url path segment and index response root, defaults to the table name
    :param record_name: show/create response root, defaults to the snake cased class name
    :param primary_key: attribute used to look up instances, defaults to the mapper primary key
    :param fields: whitelisted (queryable) fields, defaults to the mapped columns
    :param associations: whitelisted associations
    :param remotes: remote collections, Remote instances or names
    :param read_only: fields that can't be written by create and update
    :param attributes: serialized attributes, defaults to the mapped columns
    """

    model: Any
    actions: Tuple[str, ...] = ()
    collection_name: Optional[str] = None
    record_name: Optional[str] = None
    primary_key: Optional[str] = None
    fields: Optional[Tuple[str, ...]] = None
    associations: Tuple[str, ...] = ()
    remotes: Tuple[Remote, ...] = ()
    read_only: Tuple[str, ...] = ()
    attributes: Optional[Tuple[str, ...]] = None
    url_prefix: str = ""

    def __post_init__(self):
        mapper = sqla_inspect(self.model)
        set_value = object.__setattr__
        set_value(self, "actions", _actions(self.actions))
        if self.collection_name is None:
            set_value(self, "collection_name", self.model.__tablename__)
        if self.record_name is None:
            set_value(self, "record_name", snake_case(self.model.__name__))
        if self.primary_key is None:
            pk_names = primary_key_names(self.model)
            if len(pk_names) != 1:
                raise SchemaMismatchError(f"{self.model.__name__} needs a single column primary_key")
            set_value(self, "primary_key", pk_names[0])
        elif self.primary_key not in mapper.column_attrs:
            raise SchemaMismatchError(f'{self.model.__name__} has no column "{self.primary_key}"')
        if self.fields is None:
            set_value(self, "fields", tuple(prop.key for prop in mapper.column_attrs))
        else:
            set_value(self, "fields", tuple(self.fields))
        set_value(self, "associations", tuple(self.associations))
        remotes = tuple(remote if isinstance(remote, Remote) else Remote(remote) for remote in self.remotes)
        set_value(self, "remotes", remotes)
        set_value(self, "read_only", tuple(self.read_only))

    def enabled(self, action: str) -> bool:
        return action in self.actions

    @property
    def writable_fields(self) -> Tuple[str, ...]:
        """
        fields that may be assigned from a request body
        """
        return tuple(name for name in self.fields if name not in self.read_only)

    @property
    def remote_names(self) -> Tuple[str, ...]:
        return tuple(remote.name for remote in self.remotes)

    def with_overrides(self, overrides: Mapping[str, Any]) -> "ResourceConfig":
        """Return a new config where known fields are replaced by ``overrides``."""
        valid = {k: v for k, v in overrides.items() if k in self.__dataclass_fields__}
        if not valid:
            return self
        return replace(self, **valid)
