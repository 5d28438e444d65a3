# Query refinement
#
# refine() applies a RefinementRequest to a base scope (a QueryPlan), in this order:
# 1. scalar filters (AND, multi valued => IN)
# 2. association nodes: cardinality-many nodes become batch loaded includes with their own
#    filters/order/pagination, cardinality-one nodes become EXISTS conditions on the parent
# 3. ordering (primary key order when nothing was requested)
# 4. limit/offset last, page/per_page wins over limit/offset
#
import datetime
import decimal
import uuid
from typing import List, Tuple

import refinery
from . import associations
from .classifier import RefinementRequest
from .config import get_config
from .errors import ClassificationError
from .plan import ONE, Predicate, QueryPlan, RelatedPredicate, column_property, edge_for

NULL = "null"
TRUE_VALUES = ("true", "t", "1", "yes")
FALSE_VALUES = ("false", "f", "0", "no")


def coerce_value(prop, value, key: str = ""):
    """
    Convert a query string value to the python type of the column

    :param prop: sqla ColumnProperty
    :param value: raw value
    :param key: parameter name, used in the error message
    :return: coerced value, None for "null"
    """
    if value is None or (isinstance(value, str) and value.lower() == NULL):
        return None
    try:
        python_type = prop.columns[0].type.python_type
    except NotImplementedError:
        return value
    if type(value) is python_type:
        return value
    try:
        if python_type is bool:
            lowered = str(value).lower()
            if lowered in TRUE_VALUES:
                return True
            if lowered in FALSE_VALUES:
                return False
            raise ValueError(value)
        if python_type is datetime.datetime:
            return datetime.datetime.fromisoformat(str(value))
        if python_type is datetime.date:
            return datetime.date.fromisoformat(str(value))
        if python_type is datetime.time:
            return datetime.time.fromisoformat(str(value))
        if python_type is uuid.UUID:
            return uuid.UUID(str(value))
        if python_type in (int, float, decimal.Decimal):
            return python_type(value)
    except (TypeError, ValueError, decimal.InvalidOperation):
        raise ClassificationError(f'Invalid value for {key or prop.key}: "{value}"')
    return value


def _predicates(model, request: RefinementRequest) -> List[Predicate]:
    result = []
    for flt in request.filters.values():
        prop = column_property(model, flt.field)
        key = f"{request.path}.{flt.field}" if request.path else flt.field
        values = tuple(coerce_value(prop, value, key) for value in flt.values)
        result.append(Predicate(flt.field, values, flt.multi))
    return result


def related_condition(model, name: str, request: RefinementRequest):
    """
    Build the condition plan for a cardinality-one association node

    :return: RelatedPredicate or None if the node has no conditions
    """
    target = edge_for(model, name).target
    related = []
    for child_name, child_request in request.associations.items():
        if edge_for(target, child_name).cardinality != ONE:
            continue
        condition = related_condition(target, child_name, child_request)
        if condition is not None:
            related.append(condition)
    filters = _predicates(target, request)
    if not (filters or related):
        return None
    return RelatedPredicate(name, QueryPlan(target, filters=tuple(filters), related=tuple(related)))


def _pagination(base_scope: QueryPlan, request: RefinementRequest) -> Tuple:
    if request.pagination.is_empty:
        return base_scope.limit, base_scope.offset
    limit, offset = request.pagination.resolve()
    max_limit = get_config("MAX_PAGE_LIMIT")
    max_offset = get_config("MAX_PAGE_OFFSET")
    if limit is not None and max_limit is not None and limit > max_limit:
        refinery.log.info(f"Limit {limit} exceeds MAX_PAGE_LIMIT {max_limit}")
        limit = max_limit
    if offset is not None and max_offset is not None and offset > max_offset:
        offset = max_offset
    return limit, offset


def refine(base_scope: QueryPlan, request: RefinementRequest) -> QueryPlan:
    """
    Apply the classified request parameters to `base_scope`

    :param base_scope: QueryPlan for the collection being refined
    :param request: RefinementRequest classified against base_scope.model
    :return: new QueryPlan, base_scope isn't modified
    :raises SchemaMismatchError: a filter, order field or association doesn't exist in the schema
    """
    model = base_scope.model

    filters = list(base_scope.filters) + _predicates(model, request)

    related = list(base_scope.related)
    includes = dict(base_scope.includes)
    for name, node in request.associations.items():
        edge = edge_for(model, name)
        if edge.cardinality == ONE:
            condition = related_condition(model, name, node)
            if condition is not None:
                related.append(condition)
        includes[name] = associations.resolve(base_scope, name, node)

    order = tuple(request.order) or base_scope.order
    for field_name, _ in order:
        column_property(model, field_name)

    limit, offset = _pagination(base_scope, request)

    return base_scope.replace(
        filters=tuple(filters),
        related=tuple(related),
        includes=tuple(includes.items()),
        order=order,
        limit=limit,
        offset=offset,
    )
