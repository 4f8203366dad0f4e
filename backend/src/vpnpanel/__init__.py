"""vpnpanel - admin and client API for a VPN reselling service."""

__version__ = "1.0.0"
