"""
Herald - Relay live-stream and feed updates to chat platforms.

Watches live-status endpoints and post feeds on independent schedules,
detects meaningful changes and routes them to Telegram, QQ and SimpleX.
"""

__version__ = "1.0.0"
