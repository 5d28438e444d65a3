# flake8: noqa: F401
#
# refinery.DB and refinery.log are module globals, the submodules access them at call time
#
from .refinery_init import DB, log, Refinery
from .errors import (
    ApiError,
    ClassificationError,
    InvalidDirectiveError,
    WhitelistRejection,
    SchemaMismatchError,
    NotFoundError,
    ValidationError,
    ServerFault,
)
from .request import RefineryRequest
from .serializers import RefineryJSONProvider, serialize
from .whitelist import NameKind, WhitelistRegistry, register, is_allowed
from .classifier import RefinementRequest, classify
from .plan import QueryPlan, Predicate, AssociationEdge, edge_for
from .refiner import refine
from .associations import Remote, resolve, resolve_remote
from .resource_config import ResourceConfig, API_ACTIONS
from .api import RefineryApi
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "Refinery",
    "RefineryApi",
    "ResourceConfig",
    "API_ACTIONS",
    "Remote",
    # query refinement:
    "register",
    "is_allowed",
    "NameKind",
    "WhitelistRegistry",
    "classify",
    "RefinementRequest",
    "refine",
    "resolve",
    "resolve_remote",
    "QueryPlan",
    "Predicate",
    "AssociationEdge",
    "edge_for",
    # serialization
    "serialize",
    "RefineryJSONProvider",
    # Errors:
    "ApiError",
    "ClassificationError",
    "InvalidDirectiveError",
    "WhitelistRejection",
    "SchemaMismatchError",
    "NotFoundError",
    "ValidationError",
    "ServerFault",
    # request
    "RefineryRequest",
)
