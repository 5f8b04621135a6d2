"""
TG -> WA Bridge

Relays messages from a Telegram source account into a WhatsApp group,
with radar service announcements and an HTTP control surface.
"""

__version__ = "0.1.0"
