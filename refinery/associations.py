# Association resolution
#
# resolve() builds the child plan of a declared association, anchored to the parent:
# - for a parent record the anchor is bound to the parent key right away ("associated" action)
# - for a parent scope the keys are bound when the parent records are loaded (eager loading)
# The anchor can't be changed by the client: a nested filter on the ownership key is discarded.
#
# resolve_remote() delegates to the handler registered for a remote collection.
#
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import refinery
from . import refiner
from .classifier import RefinementRequest, classify
from .errors import NotFoundError, WhitelistRejection
from .plan import ONE, Anchor, QueryPlan, edge_for
from .whitelist import NameKind
from . import whitelist


@dataclass(frozen=True)
class Remote:
    """
    Remote (virtual) collection of a resource type

    :param name: name of the collection, also used as url path segment and response root
    :param handler: callable(parent, **params) returning a QueryPlan or a list of records,
        defaults to the parent method with the same name
    :param model: resource type of the returned records, its whitelisted fields
        determine which parameters are passed to the handler
    """

    name: str
    handler: Optional[Callable[..., Any]] = None
    model: Any = None

    def call(self, parent, **params):
        if self.handler is not None:
            return self.handler(parent, **params)
        method = getattr(parent, self.name, None)
        if not callable(method):
            raise NotFoundError(f"{type(parent).__name__} has no remote collection {self.name}")
        return method(**params)


# (resource type, remote name) -> Remote, written while the routes are exposed
_remotes: Dict[Tuple[Any, str], Remote] = {}


def register_remote(resource_type, remote: Remote) -> Remote:
    _remotes[(resource_type, remote.name)] = remote
    return remote


def get_remote(resource_type, name: str) -> Remote:
    try:
        return _remotes[(resource_type, name)]
    except KeyError:
        raise NotFoundError(f"{resource_type.__name__} has no remote collection {name}")


def _is_record(parent) -> bool:
    return not isinstance(parent, QueryPlan)


def resolve(parent, name: str, request: Optional[RefinementRequest] = None) -> QueryPlan:
    """
    Build the plan for the `name` association of `parent`

    :param parent: parent record or parent QueryPlan
    :param name: association name
    :param request: nested RefinementRequest for the association
    :return: QueryPlan anchored on the parent, `single` for cardinality-one associations
    """
    model = type(parent) if _is_record(parent) else parent.model
    edge = edge_for(model, name)
    if request is None:
        request = RefinementRequest(edge.target, path=name)

    anchor = Anchor(edge)
    if _is_record(parent):
        anchor = anchor.bind([edge.parent_key(parent)])

    ownership_key = edge.ownership_key
    if ownership_key and ownership_key in request.filters:
        refinery.log.debug(f"Discarding filter on ownership key {edge.target.__name__}.{ownership_key} of {edge}")
        request = request.without_filter(ownership_key)

    base_scope = QueryPlan(edge.target, anchor=anchor)
    if edge.cardinality == ONE:
        # a singular association is only (eager) loaded, nothing to filter or paginate
        return refiner.refine(base_scope.replace(single=True), request.includes_only())
    return refiner.refine(base_scope, request)


def resolve_remote(parent, remote_name: str, params: Optional[Mapping[str, Any]] = None):
    """
    Resolve a remote collection of a parent record

    Only the parameters whitelisted as fields of the remote model are passed to the handler.
    When the handler returns a QueryPlan, the params are applied to it like for any other collection.

    :param parent: parent record
    :param remote_name: name of the remote collection
    :param params: raw request parameters
    :return: QueryPlan or the collection returned by the handler
    """
    resource_type = type(parent)
    try:
        whitelist.registry.require(resource_type, remote_name, NameKind.REMOTE)
    except WhitelistRejection as exc:
        raise NotFoundError(exc.message)
    remote = get_remote(resource_type, remote_name)
    params = params or {}

    kwargs = {}
    if remote.model is not None:
        for field_name, flt in classify(remote.model, params).filters.items():
            kwargs[field_name] = list(flt.values) if flt.multi else flt.value

    result = remote.call(parent, **kwargs)
    if isinstance(result, QueryPlan):
        return refiner.refine(result, classify(result.model, params))
    return result
