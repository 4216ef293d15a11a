"""pulsemon — probe scheduler, notifier and JSON status server."""

from pulsemon.version import __version__

__all__ = ["__version__"]
