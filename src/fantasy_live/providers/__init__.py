from importlib import import_module
from typing import Type

from .base import GameRef, PollerStatus, ProviderPoller

POLLER_CLASSES = {
    "tank01": ("tank01", "Tank01Poller"),
    "espn": ("espn", "EspnPoller"),
}


def poller_class(name: str) -> Type[ProviderPoller]:
    try:
        mod_name, cls_name = POLLER_CLASSES[name]
    except KeyError:
        raise ValueError(f"Unknown provider '{name}'; expected one of {sorted(POLLER_CLASSES)}") from None
    mod = import_module(f"fantasy_live.providers.{mod_name}")
    return getattr(mod, cls_name)


__all__ = ["GameRef", "PollerStatus", "ProviderPoller", "poller_class"]
