# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


from enum import StrEnum
from typing import Self

__all__ = 'StringEnum',  # noqa: COM818


class StringEnum(StrEnum):
    """Base class for enumerations whose values are the wire tokens"""

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}.{self.name}'

    @classmethod
    def lookup(cls, token: str) -> Self | None:
        """Return the member for the wire token or None if the token is unknown"""
        return cls._value2member_map_.get(token)  # type: ignore[return-value]
