from __future__ import annotations

from collections.abc import Callable, Mapping
from functools import wraps
from typing import TYPE_CHECKING, Any, ClassVar, cast

__all__ = ["MetadataAliasMixin"]

_MISSING: Any = object()


def _coerce(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    raise TypeError("metadata assignments must be mapping types")


class MetadataAliasMixin:
    """Accept ``metadata=`` in constructors for models with a ``meta_data`` column.

    ``metadata`` is reserved by SQLAlchemy's declarative base, so models map
    the JSON column under ``meta_data``. This mixin lets callers keep using the
    natural keyword when building rows (``PaymentAttempt(metadata={...})``) and
    exposes a typed ``metadata_dict`` accessor.
    """

    if TYPE_CHECKING:
        meta_data: dict[str, Any]

    __metadata_alias__: ClassVar[str] = "metadata"

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "__tablename__" not in vars(cls):
            return
        original_init = cast(Callable[..., None], cls.__init__)
        if getattr(original_init, "__metadata_alias_wrapped__", False):
            return

        alias = cls.__metadata_alias__

        @wraps(original_init)
        def __init__(self: Any, *args: Any, **init_kwargs: Any) -> None:
            value = init_kwargs.pop(alias, _MISSING)
            if value is not _MISSING and "meta_data" not in init_kwargs:
                init_kwargs["meta_data"] = _coerce(value)
            original_init(self, *args, **init_kwargs)

        __init__.__metadata_alias_wrapped__ = True  # type: ignore[attr-defined]
        cls.__init__ = __init__  # type: ignore[method-assign]

    @property
    def metadata_dict(self) -> dict[str, Any]:
        return self.meta_data if self.meta_data is not None else {}

    @metadata_dict.setter
    def metadata_dict(self, value: Mapping[str, Any]) -> None:
        self.meta_data = _coerce(value)

    def merge_metadata(self, **values: Any) -> dict[str, Any]:
        """Return a new metadata dict with ``values`` merged in and assign it.

        Reassigning (rather than mutating) keeps SQLAlchemy change tracking
        working for plain JSON columns.
        """

        merged = {**self.metadata_dict, **values}
        self.meta_data = merged
        return merged
