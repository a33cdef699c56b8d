"""
Notification channels, one per supported chat platform.
"""

from herald.channels.base import NotificationChannel
from herald.channels.qq import QQChannel
from herald.channels.simplex import SimpleXChannel
from herald.channels.telegram import TelegramChannel
from herald.config import AppConfig, QQAccount

__all__ = [
    "NotificationChannel",
    "QQChannel",
    "SimpleXChannel",
    "TelegramChannel",
    "build_channels",
]


def build_channels(config: AppConfig) -> dict[str, NotificationChannel]:
    """
    Create one channel instance per supported channel kind.

    Parameters
    ----------
    config : AppConfig
        Validated application configuration.

    Returns
    -------
    dict[str, NotificationChannel]
        Channels keyed by kind.
    """
    qq_accounts = {
        name: account
        for name, account in config.accounts.items()
        if isinstance(account, QQAccount)
    }
    return {
        "telegram": TelegramChannel(config.telegram.token, proxy_url=config.defaults.proxy),
        "qq": QQChannel(qq_accounts, timeout=config.defaults.request_timeout),
        "simplex": SimpleXChannel(),
    }
