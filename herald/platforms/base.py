"""
Protocol definition for platform adapters.
"""

from typing import Any, Protocol, runtime_checkable

from herald.config import PlatformSpec
from herald.models import Snapshot


@runtime_checkable
class PlatformAdapter(Protocol):
    """
    Protocol defining the interface for platform adapters.

    One implementation exists per platform kind. Adapters are stateless
    with respect to subscriptions and may be called concurrently; the
    caller serializes calls sharing an account.
    """

    kind: str
    display_name: str

    async def fetch(self, spec: PlatformSpec, account: Any = None) -> Snapshot:
        """
        Fetch the current observable state of a source.

        Parameters
        ----------
        spec : PlatformSpec
            What to fetch.
        account : Any
            Shared account credentials, if the platform references one.

        Returns
        -------
        Snapshot
            A live status or a feed page, items oldest first.

        Raises
        ------
        FetchError
            On network, authentication or parse failures.
        """
        ...
