# Query plans: the executable representation of a refined collection
#
# A QueryPlan is built by the refiner and compiled to a SQLAlchemy select():
# anchor (parent ownership) -> filters -> related conditions -> order -> offset/limit
#
# Eager loads ("includes") are executed in batches: one query per association node,
# using the parent keys of the records loaded by the parent plan, the results are
# attached with set_committed_value so the session doesn't see them as changes.
#
# pylint: disable=protected-access
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, false, func, inspect as sqla_inspect, or_, select
from sqlalchemy.orm import aliased
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.orm.interfaces import MANYTOMANY, MANYTOONE, ONETOMANY

import refinery
from .errors import SchemaMismatchError

ONE = "one"
MANY = "many"

PARENT_KEY_LABEL = "_refinery_parent_key"
ROW_NUMBER_LABEL = "_refinery_row_number"


def column_property(model, name: str):
    """
    :param model: mapped class
    :param name: column attribute name
    :return: sqla ColumnProperty
    :raises SchemaMismatchError: if `name` isn't a column of `model`
    """
    mapper = sqla_inspect(model)
    if name not in mapper.column_attrs:
        raise SchemaMismatchError(f'{model.__name__} has no column "{name}"')
    return mapper.column_attrs[name]


def column_attribute(model, name: str):
    column_property(model, name)
    return getattr(model, name)


def primary_key_names(model) -> List[str]:
    mapper = sqla_inspect(model)
    return [mapper.get_property_by_column(col).key for col in mapper.primary_key]


@dataclass(frozen=True)
class AssociationEdge:
    """
    A relationship between a parent resource type and its target.
    The anchor column is matched against the parent keys, it is the ownership constraint of the child collection.
    """

    parent: Any
    name: str
    relationship: Any

    @property
    def target(self):
        return self.relationship.mapper.class_

    @property
    def direction(self):
        return self.relationship.direction

    @property
    def cardinality(self) -> str:
        if self.direction is MANYTOONE or not self.relationship.uselist:
            return ONE
        return MANY

    @property
    def secondary(self):
        return self.relationship.secondary

    @property
    def parent_column(self):
        """
        column of the parent table holding the value the child collection is anchored to
        """
        source, dest = self.relationship.synchronize_pairs[0]
        return dest if self.direction is MANYTOONE else source

    @property
    def anchor_column(self):
        """
        column (of the target or the secondary table) that must equal the parent key
        """
        source, dest = self.relationship.synchronize_pairs[0]
        return source if self.direction is MANYTOONE else dest

    @property
    def ownership_key(self) -> Optional[str]:
        """
        :return: name of the target attribute that anchors the child to its parent, if the target holds it
        """
        if self.direction is not ONETOMANY:
            return None
        return sqla_inspect(self.target).get_property_by_column(self.anchor_column).key

    def parent_key(self, record):
        """
        :param record: parent instance
        :return: the value the children of `record` are anchored to
        """
        prop = sqla_inspect(type(record)).get_property_by_column(self.parent_column)
        return getattr(record, prop.key)

    def join_secondary(self, stmt):
        """
        many-to-many relationships are anchored on the association table
        """
        if self.direction is not MANYTOMANY:
            return stmt
        target_column, secondary_column = self.relationship.secondary_synchronize_pairs[0]
        return stmt.join(self.secondary, target_column == secondary_column)

    def __str__(self):
        return f"{self.parent.__name__}.{self.name}"


def edge_for(model, name: str) -> AssociationEdge:
    """
    :param model: mapped parent class
    :param name: relationship name
    :return: AssociationEdge
    :raises SchemaMismatchError: when `name` isn't a (single column) relationship of `model`
    """
    relationships = sqla_inspect(model).relationships
    if name not in relationships:
        raise SchemaMismatchError(f'{model.__name__} has no association "{name}"')
    relationship = relationships[name]
    if len(relationship.synchronize_pairs) != 1 or (
        relationship.secondary is not None and len(relationship.secondary_synchronize_pairs) != 1
    ):
        raise SchemaMismatchError(f"Composite keys aren't supported for association {model.__name__}.{name}")
    return AssociationEdge(model, name, relationship)


@dataclass(frozen=True)
class Anchor:
    """
    Ownership constraint of a child plan, `keys` is None until the parent records are known (eager loads)
    """

    edge: AssociationEdge
    keys: Optional[Tuple[Any, ...]] = None

    def bind(self, keys: Iterable[Any]) -> "Anchor":
        return replace(self, keys=tuple(keys))

    def clause(self):
        keys = [key for key in (self.keys or ()) if key is not None]
        column = self.edge.anchor_column
        if not keys:
            return false()
        if len(keys) == 1:
            return column == keys[0]
        return column.in_(keys)


@dataclass(frozen=True)
class Predicate:
    """
    Equality (or set membership when multi) on a scalar column, values are already coerced
    """

    field: str
    values: Tuple[Any, ...]
    multi: bool = False

    @property
    def value(self):
        return self.values[0] if self.values else None

    def clause(self, model):
        column = getattr(model, self.field)
        if not self.multi:
            return column.is_(None) if self.value is None else column == self.value
        values = [value for value in self.values if value is not None]
        clause = column.in_(values)
        if len(values) != len(self.values):
            clause = or_(column.is_(None), clause)
        return clause


@dataclass(frozen=True)
class RelatedPredicate:
    """
    Condition on a cardinality-one association, applied to the parent as an EXISTS clause
    """

    association: str
    plan: "QueryPlan"

    def clause(self, model):
        clauses = self.plan.where_clauses()
        return getattr(model, self.association).has(and_(*clauses) if clauses else None)


@dataclass(frozen=True)
class QueryPlan:
    """
    Resolved, executable query: built per request and discarded after the response
    """

    model: Any
    anchor: Optional[Anchor] = None
    filters: Tuple[Predicate, ...] = ()
    related: Tuple[RelatedPredicate, ...] = ()
    includes: Tuple[Tuple[str, "QueryPlan"], ...] = ()
    order: Tuple[Tuple[str, str], ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    # cardinality-one association: resolves to a single record (or None)
    single: bool = False

    @classmethod
    def for_model(cls, model) -> "QueryPlan":
        """
        :return: plan for the full collection of `model`
        """
        return cls(model)

    def replace(self, **changes) -> "QueryPlan":
        return replace(self, **changes)

    def predicate(self, field_name: str) -> Optional[Predicate]:
        for predicate in self.filters:
            if predicate.field == field_name:
                return predicate
        return None

    def include(self, name: str) -> Optional["QueryPlan"]:
        return dict(self.includes).get(name)

    #
    # Statement compilation
    #
    def where_clauses(self) -> List[Any]:
        clauses = [predicate.clause(self.model) for predicate in self.filters]
        clauses += [related.clause(self.model) for related in self.related]
        return clauses

    def order_clauses(self) -> List[Any]:
        """
        The primary key is appended as a tie breaker so the order is always deterministic
        """
        clauses = []
        for name, direction in self.order:
            column = column_attribute(self.model, name)
            clauses.append(column.desc() if direction == "desc" else column.asc())
        ordered = {name for name, _ in self.order}
        for pk_name in primary_key_names(self.model):
            if pk_name not in ordered:
                clauses.append(getattr(self.model, pk_name).asc())
        return clauses

    def _filtered_statement(self, *entities):
        stmt = select(self.model, *entities)
        if self.anchor is not None:
            stmt = self.anchor.edge.join_secondary(stmt)
            if self.anchor.keys is not None:
                stmt = stmt.where(self.anchor.clause())
        return stmt.where(*self.where_clauses())

    def statement(self):
        """
        :return: sqla select statement for this plan, limit and offset are applied last
        """
        stmt = self._filtered_statement().order_by(*self.order_clauses())
        if self.offset:
            stmt = stmt.offset(self.offset)
        if self.limit is not None:
            stmt = stmt.limit(self.limit)
        return stmt

    #
    # Execution
    #
    def all(self, session) -> List[Any]:
        """
        Execute the plan and batch load the includes
        :param session: sqla session
        :return: list of records
        """
        records = list(session.execute(self.statement()).scalars().unique())
        self.load_includes(session, records)
        return records

    def first(self, session):
        records = self.replace(limit=1).all(session)
        return records[0] if records else None

    def load_includes(self, session, records: List[Any]) -> None:
        """
        Load the included associations for `records`: one query per association, regardless of len(records)
        """
        if not records:
            return
        for name, child in self.includes:
            load_plan(session, child, records, name)

    def _load_grouped(self, session, keys) -> Dict[Any, List[Any]]:
        """
        :return: parent key -> ordered list of children, limit/offset are applied per parent
        """
        edge = self.anchor.edge
        anchor_column = edge.anchor_column
        stmt = self._filtered_statement(anchor_column.label(PARENT_KEY_LABEL)).where(self.anchor.bind(keys).clause())
        order_clauses = self.order_clauses()
        if self.limit is None and not self.offset:
            rows = session.execute(stmt.order_by(*order_clauses)).all()
        else:
            row_number = func.row_number().over(partition_by=anchor_column, order_by=order_clauses).label(ROW_NUMBER_LABEL)
            inner = stmt.add_columns(row_number).subquery()
            entity = aliased(self.model, inner)
            start = self.offset or 0
            outer = select(entity, inner.c[PARENT_KEY_LABEL]).where(inner.c[ROW_NUMBER_LABEL] > start)
            if self.limit is not None:
                outer = outer.where(inner.c[ROW_NUMBER_LABEL] <= start + self.limit)
            rows = session.execute(outer.order_by(inner.c[PARENT_KEY_LABEL], inner.c[ROW_NUMBER_LABEL])).all()

        grouped: Dict[Any, List[Any]] = {}
        for child, parent_key in rows:
            grouped.setdefault(parent_key, []).append(child)
        return grouped


def load_plan(session, plan: QueryPlan, parents: List[Any], name: str) -> List[Any]:
    """
    Batch load the `name` association of `parents` as described by `plan` and attach the results

    :param session: sqla session
    :param plan: child plan, anchored on the association edge
    :param parents: parent records
    :param name: association name
    :return: the loaded children
    """
    edge = plan.anchor.edge
    keys = {edge.parent_key(parent) for parent in parents}
    keys.discard(None)
    grouped = plan._load_grouped(session, keys) if keys else {}

    children: List[Any] = []
    seen = set()
    for parent in parents:
        related = grouped.get(edge.parent_key(parent), [])
        if edge.cardinality == ONE:
            set_committed_value(parent, name, related[0] if related else None)
        else:
            set_committed_value(parent, name, list(related))
        for child in related:
            if id(child) not in seen:
                seen.add(id(child))
                children.append(child)

    refinery.log.debug(f"Loaded {len(children)} {edge} records for {len(parents)} parents")
    plan.load_includes(session, children)
    return children
