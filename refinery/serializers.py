# Record serialization and json encoding
#
# A record is serialized to its declared attributes (the mapped columns by default),
# cardinality-one references are represented by their key (<name>_id).
# Associations are only expanded when they were eager loaded by the plan, serializing
# never triggers a lazy load.

import datetime
import decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID
from flask.json.provider import DefaultJSONProvider
from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.orm.interfaces import MANYTOONE
import refinery
from .config import is_debug

# resource type -> serialized attribute names
_attributes: Dict[Any, List[str]] = {}


def register_attributes(model, names: Optional[Iterable[str]] = None) -> List[str]:
    """
    Declare the attributes that are serialized for `model`
    :param model: mapped class
    :param names: attribute names, the mapped columns if None
    :return: the attribute names
    """
    if names is None:
        names = [prop.key for prop in sqla_inspect(model).column_attrs]
    _attributes[model] = list(names)
    return _attributes[model]


def attributes(model) -> List[str]:
    result = _attributes.get(model)
    if result is None:
        result = [prop.key for prop in sqla_inspect(model).column_attrs]
    return result


def _references(record) -> Dict[str, Any]:
    """
    Key references for the loaded has-one associations
    many-to-one references are columns of the record already
    """
    result = {}
    state = sqla_inspect(record)
    for rel in state.mapper.relationships:
        if rel.direction is MANYTOONE or rel.uselist or rel.key not in state.dict:
            continue
        related = state.dict[rel.key]
        ref_key = f"{rel.key}_id"
        if related is None:
            result[ref_key] = None
        else:
            identity = sqla_inspect(related).identity
            result[ref_key] = identity[0] if identity and len(identity) == 1 else identity
    return result


def serialize(record, plan=None) -> Optional[Dict[str, Any]]:
    """
    :param record: model instance
    :param plan: QueryPlan the record was loaded with, its includes are expanded
    :return: json serializable dict
    """
    if record is None:
        return None
    result = {name: getattr(record, name) for name in attributes(type(record))}
    for ref_key, value in _references(record).items():
        result.setdefault(ref_key, value)
    if plan is None:
        return result
    for name, child in plan.includes:
        value = getattr(record, name)
        if child.single:
            result[name] = serialize(value, child)
        else:
            result[name] = serialize_all(value, child)
    return result


def serialize_all(records, plan=None) -> List[Dict[str, Any]]:
    return [serialize(record, plan) for record in records]


class RefineryJSONProvider(DefaultJSONProvider):
    """
    Flask JSON encoding
    """

    # pylint: disable=too-many-return-statements,arguments-differ,method-hidden
    def default(self, obj, **kwargs):
        """
        override the default json encoding
        :param obj: object to be encoded
        :return: encoded/serialized object
        """
        if obj is None:
            return None
        if isinstance(obj, datetime.timedelta):
            return str(obj)
        if isinstance(obj, datetime.datetime):
            return obj.isoformat(" ")
        if isinstance(obj, (datetime.date, datetime.time)):
            return obj.isoformat()
        if isinstance(obj, set):
            return list(obj)
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, decimal.Decimal):
            return float(obj)
        if isinstance(obj, bytes):
            return obj.hex()
        if hasattr(type(obj), "__mapper__"):
            return serialize(obj)

        if not is_debug():
            refinery.log.warning(f'JSON Encoding Error: Unknown object type "{type(obj)}" for {obj}')
            return {"error": "invalid object"}
        return str(obj)
