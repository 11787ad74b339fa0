import logging
from typing import Callable, Optional

from flask import Flask

from .api.routes import sharing_api
from .cli import sharing as sharing_cli
from .collaboration.manager import SharingManager
from .collaboration.notifications import InvitationNotifier
from .const import (
    DEFAULT_BASE_URL,
    DEFAULT_EDITING_ACTIVITIES,
    DEFAULT_IDLE_WINDOW_SECONDS,
    DEFAULT_MAX_ACCESS_COUNT,
    DEFAULT_MAX_ACCESS_COUNT_LIMIT,
    DEFAULT_ONLINE_WINDOW_SECONDS,
    DEFAULT_SESSION_RETENTION_HOURS,
    DEFAULT_STORE_RETRY_ATTEMPTS,
    DEFAULT_STORE_RETRY_DELAY,
    DEFAULT_TOKEN_BYTES,
    DEFAULT_URL_PREFIX,
)
from .models.sqla import SQLA
from .security.auth import create_login_manager
from .security.rate_limiting import init_rate_limiting

log = logging.getLogger(__name__)

db = SQLA()
default_db = db


class Sharing(object):
    """
    This is the Flask extension for project sharing. Initialize it with
    your Flask app and, optionally, your own ``SQLA`` instance::

        app = Flask(__name__)
        app.config.from_object('config')
        db = SQLA(app)
        sharing = Sharing(app, db)

    It installs the ``SHARING_*`` configuration defaults, the REST
    blueprint, rate limiting, a Flask-Login ``LoginManager`` (when the app
    has none) and the ``flask sharing`` commands.

    :param app: The flask app object
    :param db: ``SQLA`` instance holding the sharing tables, the module
        level ``db`` by default
    :param notifier: ``InvitationNotifier`` delivering invitations, taken
        from ``SHARING_NOTIFIER`` when omitted
    :param clock: callable returning the current naive UTC datetime
    """

    def __init__(
        self,
        app: Optional[Flask] = None,
        db: Optional[SQLA] = None,
        notifier: Optional[InvitationNotifier] = None,
        clock: Optional[Callable] = None,
    ):
        self.app = None
        self.db = db
        self.notifier = notifier
        self.clock = clock
        self.manager: Optional[SharingManager] = None
        self.login_manager = None
        self.limiter = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask, db: Optional[SQLA] = None):
        self.app = app
        self.db = db or self.db or default_db
        self._init_config(app)
        if "sqlalchemy" not in app.extensions:
            self.db.init_app(app)
        self.manager = SharingManager.from_config(
            self.db.session, app.config, notifier=self.notifier, clock=self.clock
        )
        self.login_manager = create_login_manager(app)
        self.limiter = init_rate_limiting(app)
        app.register_blueprint(sharing_api, url_prefix=app.config["SHARING_URL_PREFIX"])
        app.cli.add_command(sharing_cli)
        app.extensions["sharing"] = self
        log.info(
            "Sharing initialized at %s (online window %ss)",
            app.config["SHARING_URL_PREFIX"],
            app.config["SHARING_ONLINE_WINDOW_SECONDS"],
        )

    @staticmethod
    def _init_config(app: Flask):
        app.config.setdefault("SHARING_URL_PREFIX", DEFAULT_URL_PREFIX)
        app.config.setdefault("SHARING_BASE_URL", DEFAULT_BASE_URL)
        app.config.setdefault("SHARING_ONLINE_WINDOW_SECONDS", DEFAULT_ONLINE_WINDOW_SECONDS)
        app.config.setdefault("SHARING_IDLE_WINDOW_SECONDS", DEFAULT_IDLE_WINDOW_SECONDS)
        app.config.setdefault(
            "SHARING_SESSION_RETENTION_HOURS", DEFAULT_SESSION_RETENTION_HOURS
        )
        app.config.setdefault("SHARING_TOKEN_BYTES", DEFAULT_TOKEN_BYTES)
        app.config.setdefault(
            "SHARING_DEFAULT_MAX_ACCESS_COUNT", DEFAULT_MAX_ACCESS_COUNT
        )
        app.config.setdefault(
            "SHARING_MAX_ACCESS_COUNT_LIMIT", DEFAULT_MAX_ACCESS_COUNT_LIMIT
        )
        app.config.setdefault("SHARING_EDITING_ACTIVITIES", DEFAULT_EDITING_ACTIVITIES)
        app.config.setdefault("SHARING_ALLOW_REINVITE", True)
        app.config.setdefault("SHARING_STORE_RETRY_ATTEMPTS", DEFAULT_STORE_RETRY_ATTEMPTS)
        app.config.setdefault("SHARING_STORE_RETRY_DELAY", DEFAULT_STORE_RETRY_DELAY)
        app.config.setdefault("SHARING_TRUST_USER_HEADER", False)
        app.config.setdefault("SHARING_NOTIFIER", None)
