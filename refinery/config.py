# Configuration settings should be set in app.config or passed to the Refinery constructor
# The get_config function resolves the app config first, then the Refinery class defaults
# and finally the environment
import os
import logging
from flask import current_app
import refinery
from typing import Optional, Union

# settings that are read from the environment as integers
INT_OPTIONS = ("MAX_PAGE_LIMIT", "MAX_PAGE_OFFSET", "DEFAULT_PAGE_LIMIT", "DEFAULT_PER_PAGE")


def get_config(option: str) -> Optional[Union[bool, int, str]]:
    """Retrieve a configuration parameter from the app
    :param option: configuration parameter
    :return: configuration value
    """
    try:
        result = current_app.config[option]
    except (KeyError, RuntimeError):
        # no app context or the option isn't in the app config
        result = getattr(refinery.Refinery, option, None)
    if result is not None:
        return result

    result = os.environ.get(option, None)
    if result is not None and option in INT_OPTIONS:
        try:
            result = int(result)
        except ValueError:
            refinery.log.warning(f'Invalid integer for {option} in the environment: "{result}"')
            result = None
    return result


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    :rtype: Boolean
    """
    return refinery.log.getEffectiveLevel() < logging.INFO
