import logging
import os
import sys
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from .request import RefineryRequest
from .serializers import RefineryJSONProvider
import refinery
import flask.app


class Refinery:
    """This class configures the Flask application to serve refined SQLAlchemy collections
    :param app: a Flask application.
    :param app_db: Flask-SQLAlchemy extension, defaults to app.extensions["sqlalchemy"]
    :param kwargs: configuration overrides, stored as class variables
    """

    # Configuration settings are stored as class variables
    MAX_PAGE_LIMIT = 100000
    MAX_PAGE_OFFSET = 2**31
    # None: no limit when the client doesn't paginate a top level collection
    DEFAULT_PAGE_LIMIT = None
    # page size used when the client sends page= without per_page=
    DEFAULT_PER_PAGE = 25
    LOGLEVEL = logging.WARNING
    URL_PREFIX = ""
    # flask_restful crossdomain origin, no cors headers when None
    CORS_DOMAIN = None

    def __init__(self, app: flask.app.Flask, *args, **kwargs) -> None:
        """
        Constructor
        """
        self.app = app
        if app is not None:
            self.init_app(app, *args, **kwargs)

    def init_app(self, app: flask.app.Flask, app_db: SQLAlchemy = None, **kwargs) -> None:
        """
        Application initialization
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        if app_db is None:
            app_db = app.extensions["sqlalchemy"]

        refinery.DB = self.db = app_db

        app.request_class = RefineryRequest
        app.json = RefineryJSONProvider(app)
        app.url_map.strict_slashes = False
        # error payloads are {"errors": ...}, no flask_restful 404 suggestions
        app.config.setdefault("ERROR_404_HELP", False)

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        for conf_name, conf_val in kwargs.items():
            setattr(Refinery, conf_name, conf_val)
        if "LOGLEVEL" in kwargs:
            log.setLevel(kwargs["LOGLEVEL"])

        # pylint: disable=unused-argument,unused-variable
        @app.teardown_appcontext
        def shutdown_session(exception=None):
            """cfr. http://flask.pocoo.org/docs/0.12/patterns/sqlalchemy/"""
            self.db.session.remove()

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        The webserver will catch stderr so we redirect everything to sys.stderr
        """
        log = logging.getLogger(__name__)
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


#
# DB and logging initialization
#
DB = SQLAlchemy()

try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = Refinery.init_logging(LOGLEVEL)
