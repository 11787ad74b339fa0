import re

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import declarative_base, DeclarativeMeta

_camelcase_re = re.compile(r"([A-Z]+)(?=[a-z0-9])")


class ModelDeclarativeMeta(DeclarativeMeta):
    """
    Names the table after the class unless ``__tablename__`` is set,
    ``ShareLink`` maps to ``share_link``.
    """

    def __new__(cls, name, bases, namespace, **kwargs):
        if (
            "__tablename__" not in namespace
            and name != "Model"
            and not namespace.get("__abstract__", False)
        ):
            namespace["__tablename__"] = (
                _camelcase_re.sub(r"_\1", name).lower().lstrip("_")
            )
        return super().__new__(cls, name, bases, namespace, **kwargs)


Model = declarative_base(name="Model", metaclass=ModelDeclarativeMeta)


class SQLA(SQLAlchemy):
    """
    Flask-SQLAlchemy bound to the sharing ``Model`` so application models
    share metadata with the sharing tables. Configure it as you would
    ``SQLAlchemy``.
    """

    def __init__(self, app=None, **kwargs):
        kwargs.setdefault("model_class", Model)
        super().__init__(app, **kwargs)
