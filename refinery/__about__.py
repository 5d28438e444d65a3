__version__ = "0.1.0"
__description__ = "refinery : refined SqlAlchemy collections over Flask-Restful"
