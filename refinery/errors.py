# Exception Handlers
#
# The application loglevel determines the level of detail shown to the user.
# If set to debug, too much sensitive info might be shown !
#
# The exceptions will be caught in http_method_decorator and formatted, for example:
# {
#      "errors": "Invalid order directive: name sideways"
# }
# or, for validation failures:
# {
#      "errors": {"title": ["can't be blank"]}
# }
#
from http import HTTPStatus
from werkzeug.exceptions import NotFound
from sqlalchemy.exc import DontWrapMixin
import refinery
from .config import is_debug

HIDDEN_LOG = "(debug logging disabled)"


class ApiError(Exception, DontWrapMixin):
    """
    Base class for the errors that are converted to an http response
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    message = ""

    @property
    def errors(self):
        """
        :return: the value of the "errors" member of the response payload
        """
        return self.message


class ClassificationError(ApiError):
    """
    This exception is raised when the client sent malformed query parameters or body
    Always send back the message to the client in the response
    """

    status_code = HTTPStatus.BAD_REQUEST.value

    def __init__(self, message="", status_code=HTTPStatus.BAD_REQUEST.value):
        Exception.__init__(self, message)
        self.status_code = status_code
        refinery.log.warning("ClassificationError: %s", message)
        self.message = message


class InvalidDirectiveError(ClassificationError):
    """
    A reserved parameter (order, limit, offset, page, per_page, include) could not be parsed
    """

    def __init__(self, key, value=None, reason="invalid value"):
        """
        :param key: offending parameter name
        :param value: offending parameter value
        :param reason: short description
        """
        self.key = key
        self.value = value
        super().__init__(f"Invalid {key} directive ({reason}): {value}")


class WhitelistRejection(ApiError):
    """
    Raised when a name isn't declared for a resource type.
    The classifier catches it and drops the parameter, it never reaches the client.
    """

    status_code = HTTPStatus.BAD_REQUEST.value

    def __init__(self, resource_type, name):
        Exception.__init__(self, name)
        self.resource_type = resource_type
        self.name = name
        self.message = f"{getattr(resource_type, '__name__', resource_type)}.{name} is not whitelisted"


class SchemaMismatchError(ApiError):
    """
    A whitelisted name doesn't exist in the storage schema of the resource type
    """

    status_code = HTTPStatus.BAD_REQUEST.value

    def __init__(self, message="", status_code=HTTPStatus.BAD_REQUEST.value):
        Exception.__init__(self, message)
        self.status_code = status_code
        refinery.log.error("SchemaMismatchError: %s", message)
        self.message = message


class NotFoundError(ApiError, NotFound):
    """
    This exception is raised when an item was not found
    """

    status_code = HTTPStatus.NOT_FOUND.value
    message = "Not Found"

    def __init__(self, message="", status_code=HTTPStatus.NOT_FOUND.value):
        """
        :param message: Message to be returned in the (json) body
        :param status_code: HTTP Status code
        """
        NotFound.__init__(self, description=message or None)
        self.status_code = status_code
        refinery.log.info("Not found: %s", message)
        if message:
            self.message = f"{NotFoundError.message}: {message}"


class ValidationError(ApiError):
    """
    This exception is raised when a record failed validation on save.
    The field-level messages are sent back to the client.
    """

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY.value

    def __init__(self, errors=None, field=None, status_code=HTTPStatus.UNPROCESSABLE_ENTITY.value):
        """
        :param errors: {field: [messages]} mapping, or a single message when `field` is given
        :param field: field name for a single message
        """
        if isinstance(errors, str):
            errors = {field or "base": [errors]}
        Exception.__init__(self, errors)
        self.status_code = status_code
        self.field_errors = {key: list(messages) for key, messages in (errors or {}).items()}
        refinery.log.warning("ValidationError: %s", self.field_errors)

    @property
    def errors(self):
        return self.field_errors

    @property
    def message(self):
        return "; ".join(f"{field} {', '.join(messages)}" for field, messages in self.field_errors.items())

    def merge(self, other):
        """
        Add the field messages of another ValidationError
        """
        for field, messages in other.field_errors.items():
            self.field_errors.setdefault(field, []).extend(messages)
        return self


class ServerFault(ApiError):
    """
    Uncaught storage/infrastructure failure, no detail is leaked unless debug logging is enabled
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    message = "Server Fault: "

    def __init__(self, message="", status_code=HTTPStatus.INTERNAL_SERVER_ERROR.value):
        Exception.__init__(self, message)
        self.status_code = status_code
        refinery.log.error("Server Fault: %s", message)
        if is_debug():
            self.message = ServerFault.message + str(message)
        else:
            self.message = ServerFault.message + HIDDEN_LOG
