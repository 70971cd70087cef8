"""Shared FastAPI dependencies; tests swap them via app.dependency_overrides."""
from keyshop.payments.gateway import YooKassaClient, get_gateway
from keyshop.services.notifications.service import Notifier


def gateway_dep() -> YooKassaClient:
    return get_gateway()


def notifier_dep() -> Notifier:
    return Notifier()
