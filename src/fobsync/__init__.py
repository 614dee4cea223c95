"""Keeps an access-control device's card list in sync with a Keycloak group."""

__version__ = "0.1.0"
