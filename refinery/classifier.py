"""
Parameter classification

Turns the raw request parameters (name -> value or list of values) into a RefinementRequest:

- reserved directives: order, limit, offset, page, per_page, include
- scalar filters: ``name=Alice`` (equality) or ``id=1&id=2`` / ``id[]=1`` (set membership)
- association paths: ``author.name=Alice``, ``comments.order=-created_at``, ``comments.limit=3``

Names that aren't whitelisted for the resource type are dropped, malformed directives raise InvalidDirectiveError.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import refinery
from . import whitelist
from .config import get_config
from .errors import InvalidDirectiveError, WhitelistRejection
from .plan import edge_for
from .whitelist import NameKind

ORDER = "order"
LIMIT = "limit"
OFFSET = "offset"
PAGE = "page"
PER_PAGE = "per_page"
INCLUDE = "include"
RESERVED = (ORDER, LIMIT, OFFSET, PAGE, PER_PAGE, INCLUDE)

ASC = "asc"
DESC = "desc"
# "name", "-name", "+name", "name desc", "name ASC", dotted paths ("author.name") parse but are dropped
ORDER_TOKEN_RE = re.compile(r"^([+-]?)([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)(?:\s+([A-Za-z]+))?$")
INTEGER_RE = re.compile(r"^\d+$")
PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


@dataclass(frozen=True)
class Filter:
    """
    Scalar filter, `values` holds the raw (string) values sent by the client
    """

    field: str
    values: Tuple[Any, ...]
    multi: bool = False

    @property
    def value(self):
        return self.values[0] if self.values else None


@dataclass(frozen=True)
class Pagination:
    """
    Client pagination directives, both styles are kept so the refiner can apply the precedence rule
    """

    limit: Optional[int] = None
    offset: Optional[int] = None
    page: Optional[int] = None
    per_page: Optional[int] = None

    @property
    def is_paged(self) -> bool:
        return self.page is not None or self.per_page is not None

    @property
    def is_empty(self) -> bool:
        return self.limit is None and self.offset is None and not self.is_paged

    def resolve(self) -> Tuple[Optional[int], Optional[int]]:
        """
        Normalize to (limit, offset). page/per_page wins over limit/offset, page is 1-indexed
        """
        if self.is_paged:
            per_page = self.per_page if self.per_page is not None else get_config("DEFAULT_PER_PAGE")
            page = self.page if self.page is not None else 1
            return per_page, (page - 1) * per_page
        return self.limit, self.offset


@dataclass
class RefinementRequest:
    """
    Classified and whitelisted representation of the query parameters for one resource type
    """

    resource_type: Any
    filters: Dict[str, Filter] = field(default_factory=dict)
    order: List[Tuple[str, str]] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)
    associations: Dict[str, "RefinementRequest"] = field(default_factory=dict)
    path: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.filters or self.order or self.associations) and self.pagination.is_empty

    def without_filter(self, field_name: str) -> "RefinementRequest":
        """
        :return: a copy of the request without a filter on `field_name`
        """
        filters = {name: flt for name, flt in self.filters.items() if name != field_name}
        return RefinementRequest(self.resource_type, filters, list(self.order), self.pagination, dict(self.associations), self.path)

    def includes_only(self) -> "RefinementRequest":
        """
        :return: the association tree of the request without any filters, order or pagination
        """
        associations = {name: node.includes_only() for name, node in self.associations.items()}
        return RefinementRequest(self.resource_type, associations=associations, path=self.path)


def _key(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _normalize(raw_params: Mapping[str, Any]) -> Dict[str, Tuple[List[Any], bool]]:
    """
    :param raw_params: mapping of name -> value or list of values (eg. werkzeug MultiDict.to_dict(flat=False))
    :return: mapping of name -> (values, multi)
    """
    result: Dict[str, Tuple[List[Any], bool]] = {}
    for name, value in raw_params.items():
        multi = name.endswith("[]")
        if multi:
            name = name[:-2]
        values = list(value) if isinstance(value, (list, tuple, set, frozenset)) else [value]
        if name in result:
            prev_values, prev_multi = result[name]
            values = prev_values + values
            multi = multi or prev_multi
        result[name] = (values, multi or len(values) > 1)
    return result


def _single(values: List[Any], key: str) -> str:
    if len(values) != 1 or not isinstance(values[0], str):
        raise InvalidDirectiveError(key, values, "single value expected")
    return values[0]


def parse_order(value: str, key: str = ORDER) -> List[Tuple[str, str]]:
    """
    Parse a csv ordering directive, eg. "name,-created_at" => [("name", "asc"), ("created_at", "desc")]

    :param value: directive value
    :param key: parameter name used in the error message
    :return: list of (field, direction)
    """
    result = []
    for token in value.split(","):
        # a "+" prefix arrives as a space when it wasn't url encoded
        token = token.strip()
        match = ORDER_TOKEN_RE.match(token)
        if not match:
            raise InvalidDirectiveError(key, value, f'unparsable field "{token}"')
        sign, name, direction = match.groups()
        if direction is not None:
            direction = direction.lower()
            if direction not in (ASC, DESC) or sign:
                raise InvalidDirectiveError(key, value, f'invalid direction for "{name}"')
        else:
            direction = DESC if sign == "-" else ASC
        result.append((name, direction))
    return result


def _parse_int(values: List[Any], key: str, minimum: int = 0) -> int:
    value = _single(values, key).strip()
    if not INTEGER_RE.match(value):
        raise InvalidDirectiveError(key, value, "non-negative integer expected")
    result = int(value)
    if result < minimum:
        raise InvalidDirectiveError(key, value, f"must be >= {minimum}")
    return result


def parse_pagination(params: Mapping[str, Tuple[List[Any], bool]], path: str = "") -> Pagination:
    """
    :param params: normalized params of a single node
    :param path: association path of the node, used in error messages
    :return: Pagination
    """
    kwargs = {}
    for name, minimum in ((LIMIT, 0), (OFFSET, 0), (PAGE, 1), (PER_PAGE, 1)):
        if name in params:
            kwargs[name] = _parse_int(params[name][0], _key(path, name), minimum)
    return Pagination(**kwargs)


def _parse_include(values: List[Any], key: str) -> List[str]:
    result = []
    for value in values:
        if not isinstance(value, str):
            raise InvalidDirectiveError(key, value, "csv expected")
        for inc_path in value.split(","):
            inc_path = inc_path.strip()
            if not inc_path:
                continue
            if not PATH_RE.match(inc_path):
                raise InvalidDirectiveError(key, value, f'invalid path "{inc_path}"')
            result.append(inc_path)
    return result


def _classify(resource_type, params: Dict[str, Tuple[List[Any], bool]], registry, path: str) -> RefinementRequest:
    request = RefinementRequest(resource_type, path=path)
    nested: Dict[str, Dict[str, Tuple[List[Any], bool]]] = {}

    if ORDER in params:
        order_key = _key(path, ORDER)
        for name, direction in parse_order(",".join(_single([v], order_key) for v in params[ORDER][0]), order_key):
            if registry.is_allowed(resource_type, name) is NameKind.FIELD:
                request.order.append((name, direction))
            else:
                refinery.log.debug(f"Dropping order field {_key(path, name)}")
    request.pagination = parse_pagination(params, path)

    if INCLUDE in params:
        # include=comments.author is the same as an (empty) nested comments node including author
        for inc_path in _parse_include(params[INCLUDE][0], _key(path, INCLUDE)):
            head, _, rest = inc_path.partition(".")
            node = nested.setdefault(head, {})
            if rest:
                node.setdefault(INCLUDE, ([], False))[0].append(rest)

    for name, (values, multi) in params.items():
        if name in RESERVED:
            continue
        head, dot, rest = name.partition(".")
        if dot:
            if not rest:
                refinery.log.debug(f"Dropping parameter {_key(path, name)}")
                continue
            node = nested.setdefault(head, {})
            prev_values, prev_multi = node.get(rest, ([], False))
            node[rest] = (prev_values + values, multi or prev_multi)
            continue
        try:
            registry.require(resource_type, name, NameKind.FIELD)
        except WhitelistRejection as exc:
            refinery.log.debug(f"Dropping parameter {_key(path, name)}: {exc.message}")
            continue
        request.filters[name] = Filter(name, tuple(values), multi)

    for assoc_name, node_params in nested.items():
        try:
            registry.require(resource_type, assoc_name, NameKind.ASSOCIATION)
        except WhitelistRejection as exc:
            refinery.log.debug(f"Dropping association path {_key(path, assoc_name)}: {exc.message}")
            continue
        target = edge_for(resource_type, assoc_name).target
        request.associations[assoc_name] = _classify(target, node_params, registry, _key(path, assoc_name))

    return request


def classify(resource_type, raw_params: Mapping[str, Any], registry: Optional[whitelist.WhitelistRegistry] = None) -> RefinementRequest:
    """
    Classify and validate the request parameters for `resource_type`

    :param resource_type: model class
    :param raw_params: mapping of parameter name -> value(s)
    :param registry: whitelist registry, the process wide registry by default
    :return: RefinementRequest
    :raises InvalidDirectiveError: malformed order/limit/offset/page/per_page/include
    """
    if registry is None:
        registry = whitelist.registry
    return _classify(resource_type, _normalize(raw_params or {}), registry, "")
