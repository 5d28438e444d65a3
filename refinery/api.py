# flask_restful API subclass
from functools import wraps
from typing import Callable, Dict, List, Tuple
from werkzeug.exceptions import HTTPException
from flask_restful import Api as FRApiBase
from flask_restful import abort
from flask_restful.utils import cors
from sqlalchemy.exc import ArgumentError, DBAPIError, IntegrityError, StatementError
import refinery
from . import associations, serializers, whitelist
from .config import get_config, is_debug
from .errors import HIDDEN_LOG, ApiError, ClassificationError, ServerFault, ValidationError
from .plan import edge_for
from .resource_config import ASSOCIATED, CREATE, DESTROY, INDEX, REMOTED, SHOW, UPDATE, ResourceConfig
from .restful import RECORD_KEY, AssociatedResource, CollectionResource, InstanceResource, RemotedResource

COLLECTION_URL_FMT = "{}/{}"
INSTANCE_URL_FMT = "{}/{}/<string:" + RECORD_KEY + ">"
NESTED_URL_FMT = "{}/{}/<string:" + RECORD_KEY + ">/{}"
ENDPOINT_FMT = "{}api.{}"
INVALID_PARAMETER = "Invalid parameter value"

# action -> (http methods, action function) per resource kind
COLLECTION_ACTIONS = {INDEX: (("get",), CollectionResource.index), CREATE: (("post",), CollectionResource.create)}
INSTANCE_ACTIONS = {
    SHOW: (("get",), InstanceResource.show),
    UPDATE: (("patch", "put"), InstanceResource.update),
    DESTROY: (("delete",), InstanceResource.destroy),
}


class RefineryApi(FRApiBase):
    """
    Subclass of the flask_restful API class where we add the expose_object method
    this method creates the API endpoints for the enabled actions of a model
    """

    def __init__(self, app=None, prefix: str = "", **kwargs) -> None:
        """
        :param app: flask app
        :param prefix: url prefix of all endpoints, defaults to the URL_PREFIX setting
        """
        self.configs: Dict[object, ResourceConfig] = {}
        super().__init__(app, prefix=prefix or (get_config("URL_PREFIX") or ""), **kwargs)

    def expose(self, *objects, url_prefix: str = "", **properties) -> List[ResourceConfig]:
        """
        Expose multiple models (or ResourceConfigs) at once

        :param objects: ResourceConfig instances or model classes
        :param url_prefix: url prefix
        :param properties: ResourceConfig arguments, used for the model classes
        :return: the exposed configurations
        """
        result = []
        for obj in objects:
            if isinstance(obj, ResourceConfig):
                config = obj.with_overrides(properties)
            else:
                config = ResourceConfig(obj, **properties)
            if url_prefix:
                config = config.with_overrides({"url_prefix": url_prefix})
            result.append(self.expose_object(config))
        return result

    def expose_object(self, config: ResourceConfig) -> ResourceConfig:
        """This methods creates the API url endpoints for a model
        :param config: ResourceConfig of the model

        creates classes of the form

        @api_decorator
        class Post_API(CollectionResource):
            config = config
            get = CollectionResource.index

        only the http methods of the enabled actions are set, a disabled action has no route
        """
        model = config.model
        for assoc_name in config.associations:
            # raises SchemaMismatchError for names that aren't relationships of the model
            edge_for(model, assoc_name)
        whitelist.register(model, config.fields, config.associations, config.remote_names)
        serializers.register_attributes(model, config.attributes)
        for remote in config.remotes:
            associations.register_remote(model, remote)
        self.configs[model] = config

        if not config.actions:
            refinery.log.warning(f"No actions enabled for {model.__name__}, nothing to expose")
            return config

        class_name = model.__name__
        url_prefix = config.url_prefix
        instance_endpoint = ENDPOINT_FMT.format(url_prefix, f"{config.collection_name}Id")
        properties = {"config": config, "instance_endpoint": instance_endpoint if config.enabled(SHOW) else None}

        url = COLLECTION_URL_FMT.format(url_prefix, config.collection_name)
        endpoint = ENDPOINT_FMT.format(url_prefix, config.collection_name)
        self._expose_actions(f"{class_name}_API", CollectionResource, COLLECTION_ACTIONS, config, properties, url, endpoint)

        url = INSTANCE_URL_FMT.format(url_prefix, config.collection_name)
        self._expose_actions(f"{class_name}_API_i", InstanceResource, INSTANCE_ACTIONS, config, properties, url, instance_endpoint)

        if config.enabled(ASSOCIATED):
            for assoc_name in config.associations:
                url = NESTED_URL_FMT.format(url_prefix, config.collection_name, assoc_name)
                endpoint = ENDPOINT_FMT.format(url_prefix, f"{config.collection_name}.{assoc_name}")
                props = dict(properties, association=assoc_name, get=AssociatedResource.associated)
                api_class = api_decorator(type(f"{class_name}_X_{assoc_name}_API", (AssociatedResource,), props))
                refinery.log.info(f"Exposing association {class_name}.{assoc_name} on {url}, endpoint: {endpoint}")
                self.add_resource(api_class, url, endpoint=endpoint, methods=["GET"])

        if config.enabled(REMOTED):
            for remote in config.remotes:
                url = NESTED_URL_FMT.format(url_prefix, config.collection_name, remote.name)
                endpoint = ENDPOINT_FMT.format(url_prefix, f"{config.collection_name}.{remote.name}")
                props = dict(properties, remote=remote.name, get=RemotedResource.remoted)
                api_class = api_decorator(type(f"{class_name}_R_{remote.name}_API", (RemotedResource,), props))
                refinery.log.info(f"Exposing remote collection {class_name}.{remote.name} on {url}, endpoint: {endpoint}")
                self.add_resource(api_class, url, endpoint=endpoint, methods=["GET"])

        return config

    def _expose_actions(self, class_name, base, actions: Dict[str, Tuple], config, properties, url, endpoint) -> None:
        props = dict(properties)
        methods = []
        for action, (http_methods, action_fun) in actions.items():
            if not config.enabled(action):
                continue
            for method_name in http_methods:
                props[method_name] = action_fun
                methods.append(method_name.upper())
        if not methods:
            return
        api_class = api_decorator(type(class_name, (base,), props))
        refinery.log.info(f"Exposing {config.collection_name} on {url} {methods}, endpoint: {endpoint}")
        self.add_resource(api_class, url, endpoint=endpoint, methods=methods)


def api_decorator(cls):
    """Decorator for the API views:
        - add cors
        - add generic exception handling

    :param cls: The class that will be decorated (e.g. CollectionResource subclass)
    :return: decorated class
    """
    cors_domain = get_config("CORS_DOMAIN")
    for method_name in ["patch", "post", "delete", "get", "put"]:
        method = cls.__dict__.get(method_name)
        if not method:
            continue
        decorated_method = method
        if cors_domain is not None:
            decorated_method = cors.crossdomain(origin=cors_domain)(decorated_method)
        decorated_method = http_method_decorator(decorated_method)
        setattr(cls, method_name, decorated_method)
    return cls


def http_method_decorator(fun: Callable) -> Callable:
    """Decorator for the http methods of the exposed resources
    - commit the database
    - convert all exceptions to an {"errors": ...} response

    This method will be called for all requests
    :param fun:
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(*args, **kwargs):
        """Wrap the method and perform error handling
        :param *args:
        :param **kwargs:
        :return: result of the wrapped method
        """
        try:
            result = fun(*args, **kwargs)
            refinery.DB.session.commit()
            return result

        except ApiError as exc:
            api_exception = exc

        except HTTPException as exc:
            refinery.DB.session.rollback()
            refinery.log.error(exc.description)
            abort(exc.code, errors=exc.description)

        except IntegrityError as exc:
            api_exception = ValidationError(str(exc.orig))

        except DBAPIError as exc:
            refinery.log.exception(exc)
            api_exception = ServerFault(str(exc))

        except (StatementError, ArgumentError) as exc:
            # the statement and its parameters are only shown when debugging
            refinery.log.exception(exc)
            api_exception = ClassificationError(f"{INVALID_PARAMETER}: {exc if is_debug() else HIDDEN_LOG}")

        except Exception as exc:
            refinery.log.exception(exc)
            api_exception = ServerFault(str(exc))

        refinery.DB.session.rollback()
        abort(api_exception.status_code, errors=api_exception.errors)

    return method_wrapper
