# Overview: Shared extension instances: database, migrations and the payment gateway client.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.gateway_client import GatewayClient

db = SQLAlchemy()
migrate = Migrate()


class Gateway:
    """Holds one GatewayClient per app under app.extensions["gateway_client"]."""

    def init_app(self, app, transport=None) -> None:
        app.extensions["gateway_client"] = GatewayClient.from_config(app.config, transport=transport)

    @property
    def client(self) -> GatewayClient:
        client = current_app.extensions.get("gateway_client")
        if client is None:
            self.init_app(current_app)
            client = current_app.extensions["gateway_client"]
        return client


gateway = Gateway()
