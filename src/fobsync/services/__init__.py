"""Device, identity-provider and background services for fobsync."""

from .archiver import SwipeArchiver
from .cards import Card, CardDirectory
from .device import DeviceError, DeviceLink, DeviceProtocolError, DeviceTransportError
from .keycloak import AccessUser, IdentityProviderError, KeycloakClient, Webhook
from .reconcile import ControllerState, ReconciliationController, plan_action
from .swipes import SwipeLogReader, SwipeRecord

__all__ = [
    "AccessUser",
    "Card",
    "CardDirectory",
    "ControllerState",
    "DeviceError",
    "DeviceLink",
    "DeviceProtocolError",
    "DeviceTransportError",
    "IdentityProviderError",
    "KeycloakClient",
    "ReconciliationController",
    "SwipeArchiver",
    "SwipeLogReader",
    "SwipeRecord",
    "Webhook",
    "plan_action",
]
