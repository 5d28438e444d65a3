"""
Request parsing

The query string is passed to the classifier as a mapping of name -> list of values,
so repeated keys (?id=1&id=2) are kept as multi valued filters.

Create and update bodies are json objects, either flat or wrapped in the record name:
{"title": "Hello"} or {"post": {"title": "Hello"}}
"""
from typing import Any, Dict, List, Optional
from flask import Request
from .errors import ClassificationError

# methods that carry a body
BODY_METHODS = ("POST", "PUT", "PATCH")


# pylint: disable=too-many-ancestors
class RefineryRequest(Request):
    """
    Parse the refinery request arguments:
    - query args: all values of every key
    - body: a json object
    """

    @property
    def raw_params(self) -> Dict[str, List[str]]:
        """
        :return: query args, name -> list of values
        """
        return self.args.to_dict(flat=False)

    def get_body(self, record_name: Optional[str] = None) -> Dict[str, Any]:
        """
        :param record_name: name of the wrapping key, if the client wrapped the attributes
        :return: the attributes sent in the request body
        :raises ClassificationError: if the body isn't a json object
        """
        if self.method not in BODY_METHODS:
            return {}
        payload = self.get_json(force=True, silent=True)
        if payload is None and not self.get_data():
            payload = {}
        if not isinstance(payload, dict):
            raise ClassificationError(f"Invalid JSON Payload : {payload}")
        if record_name and list(payload.keys()) == [record_name] and isinstance(payload[record_name], dict):
            payload = payload[record_name]
        return payload
