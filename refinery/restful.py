# Resource action dispatching
#
# The resource classes implement the actions, RefineryApi.expose_object creates a subclass per
# model that maps only the enabled actions to http methods:
#
#   index      GET     /<collection>
#   create     POST    /<collection>
#   show       GET     /<collection>/<key>
#   update     PATCH   /<collection>/<key>  (and PUT)
#   destroy    DELETE  /<collection>/<key>
#   associated GET     /<collection>/<key>/<association>
#   remoted    GET     /<collection>/<key>/<remote>
#
# Errors raised by the actions are converted to http responses by http_method_decorator.
from http import HTTPStatus
from typing import Any, Dict, List

from flask import jsonify, make_response, request, url_for
from flask_restful import Resource
from sqlalchemy import inspect as sqla_inspect

import refinery
from . import associations
from .classifier import classify
from .config import get_config
from .errors import ClassificationError, NotFoundError, ValidationError
from .plan import Predicate, QueryPlan, column_property, edge_for
from .refiner import coerce_value, refine
from .resource_config import ResourceConfig
from .serializers import serialize, serialize_all

# name of the url parameter holding the primary key of an instance
RECORD_KEY = "record_key"
BLANK = "can't be blank"
INVALID = "is invalid"


class RefineryResource(Resource):
    """
    Base class of the generated resources, `config` is set on the generated subclasses
    """

    config: ResourceConfig = None
    instance_endpoint: str = None

    @property
    def model(self):
        return self.config.model

    @property
    def session(self):
        return refinery.DB.session

    def find(self, key):
        """
        Look up an instance by the configured primary key
        :param key: primary key value from the url
        :return: instance
        :raises NotFoundError: when there's no instance with this key
        """
        pk_name = self.config.primary_key
        try:
            value = coerce_value(column_property(self.model, pk_name), key, pk_name)
        except ClassificationError:
            value = None
        if value is None:
            raise NotFoundError(f"{self.config.record_name} {key}")
        plan = QueryPlan.for_model(self.model).replace(filters=(Predicate(pk_name, (value,)),))
        instance = plan.first(self.session)
        if instance is None:
            raise NotFoundError(f"{self.config.record_name} {key}")
        return instance

    def assign(self, instance, body: Dict[str, Any], creating: bool = False) -> None:
        """
        Assign the request body attributes to `instance`, the field errors are collected in a single ValidationError

        :param instance: new or existing record
        :param body: attributes sent by the client
        :param creating: whether this is a new record
        :raises ClassificationError: for attributes that aren't fields of the resource
        :raises ValidationError: when an attribute is invalid or a required attribute is missing
        """
        unknown = [name for name in body if name not in self.config.fields]
        if unknown:
            raise ClassificationError(f"Unknown attribute(s) for {self.config.record_name}: {', '.join(sorted(unknown))}")

        field_errors: Dict[str, List[str]] = {}
        for name, value in body.items():
            if name in self.config.read_only or (name == self.config.primary_key and not creating):
                refinery.log.debug(f"Not assigning read-only attribute {self.config.record_name}.{name}")
                continue
            prop = column_property(self.model, name)
            try:
                if value is not None:
                    value = coerce_value(prop, value, name)
                setattr(instance, name, value)
            except ClassificationError:
                field_errors.setdefault(name, []).append(INVALID)
            except ValidationError as exc:
                for field_name, messages in exc.field_errors.items():
                    field_errors.setdefault(name if field_name == "base" else field_name, []).extend(messages)

        if creating:
            for name, messages in self.missing_attributes(instance).items():
                if name not in field_errors:
                    field_errors[name] = messages
        if field_errors:
            raise ValidationError(field_errors)

    def missing_attributes(self, instance) -> Dict[str, List[str]]:
        """
        :return: messages for the non-nullable columns without a value or default
        """
        result = {}
        for prop in sqla_inspect(self.model).column_attrs:
            column = prop.columns[0]
            if column.nullable or column.primary_key or column.default is not None or column.server_default is not None:
                continue
            if getattr(instance, prop.key) is None:
                result[prop.key] = [BLANK]
        return result

    def render(self, root: str, records, plan=None, single: bool = False):
        if single:
            return make_response(jsonify({root: serialize(records, plan)}), HTTPStatus.OK)
        return make_response(jsonify({root: serialize_all(records, plan)}), HTTPStatus.OK)


class CollectionResource(RefineryResource):
    """
    /<collection>
    """

    def index(self, **kwargs):
        """
        Refine the whole collection with the query parameters
        """
        refinement = classify(self.model, request.raw_params)
        plan = refine(QueryPlan.for_model(self.model), refinement)
        default_limit = get_config("DEFAULT_PAGE_LIMIT")
        if refinement.pagination.is_empty and default_limit is not None:
            plan = plan.replace(limit=default_limit)
        return self.render(self.config.collection_name, plan.all(self.session), plan)

    def create(self, **kwargs):
        """
        Create a record from the request body
        the response contains the created record and its location (if it can be shown)
        """
        body = request.get_body(self.config.record_name)
        instance = self.model()
        self.assign(instance, body, creating=True)
        self.session.add(instance)
        self.session.flush()

        response = make_response(jsonify({self.config.record_name: serialize(instance)}), HTTPStatus.CREATED)
        if self.instance_endpoint:
            key = getattr(instance, self.config.primary_key)
            response.headers["Location"] = url_for(self.instance_endpoint, **{RECORD_KEY: key})
        return response


class InstanceResource(RefineryResource):
    """
    /<collection>/<key>
    """

    def show(self, **kwargs):
        instance = self.find(kwargs.get(RECORD_KEY))
        return self.render(self.config.record_name, instance, single=True)

    def update(self, **kwargs):
        instance = self.find(kwargs.get(RECORD_KEY))
        self.assign(instance, request.get_body(self.config.record_name))
        self.session.flush()
        return make_response(jsonify({}), HTTPStatus.NO_CONTENT)

    def destroy(self, **kwargs):
        instance = self.find(kwargs.get(RECORD_KEY))
        self.session.delete(instance)
        self.session.flush()
        return make_response(jsonify({}), HTTPStatus.NO_CONTENT)


class AssociatedResource(RefineryResource):
    """
    /<collection>/<key>/<association>
    the query parameters refine the associated collection
    """

    association: str = None

    def associated(self, **kwargs):
        parent = self.find(kwargs.get(RECORD_KEY))
        target = edge_for(self.model, self.association).target
        plan = associations.resolve(parent, self.association, classify(target, request.raw_params))
        if plan.single:
            return self.render(self.association, plan.first(self.session), plan, single=True)
        return self.render(self.association, plan.all(self.session), plan)


class RemotedResource(RefineryResource):
    """
    /<collection>/<key>/<remote>
    """

    remote: str = None

    def remoted(self, **kwargs):
        parent = self.find(kwargs.get(RECORD_KEY))
        result = associations.resolve_remote(parent, self.remote, request.raw_params)
        if isinstance(result, QueryPlan):
            if result.single:
                return self.render(self.remote, result.first(self.session), result, single=True)
            return self.render(self.remote, result.all(self.session), result)
        # records returned by a handler are serialized by the json provider
        if result is not None and not hasattr(type(result), "__mapper__"):
            result = list(result)
        return make_response(jsonify({self.remote: result}), HTTPStatus.OK)
