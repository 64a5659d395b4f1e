"""Base exception for the IAP tunnel package."""


class IAPTunnelError(Exception):
    """Base exception for all IAP tunnel errors."""

    pass
