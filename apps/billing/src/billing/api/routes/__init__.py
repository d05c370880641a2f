"""HTTP routers; every public module exposing ``router`` is mounted by the app."""

from __future__ import annotations

import importlib
import pkgutil
from collections.abc import Iterator

from fastapi import APIRouter

__all__ = ["load_routers"]


def load_routers() -> Iterator[APIRouter]:
    """Yield the ``router`` of each route module, in module name order."""

    modules = sorted(
        info.name for info in pkgutil.iter_modules(__path__) if not info.name.startswith("_")
    )
    for name in modules:
        module = importlib.import_module(f"{__name__}.{name}")
        router = getattr(module, "router", None)
        if isinstance(router, APIRouter):
            yield router
