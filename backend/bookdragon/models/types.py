"""Custom SQLAlchemy types for the application."""

from enum import IntEnum
from typing import Any, TypeVar

from sqlalchemy import Integer
from sqlalchemy.types import TypeDecorator

E = TypeVar("E", bound=IntEnum)


class IntEnumType(TypeDecorator[E]):
    """SQLAlchemy type that stores an IntEnum as a plain INTEGER.

    - Database: INTEGER (the legacy schema stores enum ordinals)
    - Python: the IntEnum member
    """

    impl = Integer
    cache_ok = True

    def __init__(self, enum_class: type[E], *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value: E | int | None, dialect: Any) -> int | None:
        """Convert enum member (or raw int) to its integer value."""
        if value is None:
            return None
        return int(self.enum_class(value))

    def process_result_value(self, value: int | None, dialect: Any) -> E | None:
        """Convert stored integer back to the enum member."""
        if value is None:
            return None
        return self.enum_class(value)
