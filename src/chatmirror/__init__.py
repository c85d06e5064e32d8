"""Real-time state sync for a terminal WhatsApp (WAHA) client."""

__version__ = "0.1.0"
