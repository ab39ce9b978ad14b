"""roomrelay: host/client room relay daemon over Reticulum."""

__version__ = "0.1.0"
