"""Domain services issuing every REST-shaped call over a Transport."""

from .chat import ChatAPI
from .providers import ProviderAPI

__all__ = ["ChatAPI", "ProviderAPI"]
