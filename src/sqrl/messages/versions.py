# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Protocol version sets.

   Clients and servers advertise the protocol versions they support using
   a comma separated list of version numbers and inclusive version ranges,
   for example "1,3,6-10". The list is kept as a bitmask where bit v-1 is
   set if version v is supported, which makes finding the highest version
   supported by both sides a single AND operation.

"""

from collections.abc import Iterator
from itertools import groupby
from typing import ClassVar, Self

from .exceptions import InvalidVersionError, InvalidVersionRangeError, NoMatchingVersionError

__all__ = 'ProtocolVersion',  # noqa: COM818


class ProtocolVersion:
    """An immutable set of supported protocol versions"""

    __slots__ = '_bits',  # noqa: COM818

    MIN_VERSION: ClassVar[int] = 1
    MAX_VERSION: ClassVar[int] = 128

    _bits: int

    def __init__(self, bits: int, /) -> None:
        if bits <= 0 or bits.bit_length() > self.MAX_VERSION:
            raise ValueError(f'The version bitmask must be a non-empty {self.MAX_VERSION}-bit mask: {bits!r}')
        object.__setattr__(self, '_bits', bits)

    def __setattr__(self, name: str, value: object, /) -> None:
        raise AttributeError(f'{self.__class__.__name__} objects are immutable')

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}.from_text({str(self)!r})'

    def __str__(self) -> str:
        segments = []
        for _, group in groupby(enumerate(self), key=lambda item: item[1] - item[0]):
            run = [version for _, version in group]
            segments.append(f'{run[0]}' if len(run) == 1 else f'{run[0]}-{run[-1]}')
        return ','.join(segments)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ProtocolVersion):
            return self._bits == other._bits
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._bits)

    def __contains__(self, version: object) -> bool:
        return isinstance(version, int) and self.MIN_VERSION <= version <= self.MAX_VERSION and self._bits & (1 << (version - 1)) != 0

    def __iter__(self) -> Iterator[int]:
        return (index + 1 for index in range(self._bits.bit_length()) if self._bits & (1 << index))

    def __len__(self) -> int:
        return self._bits.bit_count()

    @property
    def bits(self) -> int:
        return self._bits

    @property
    def max_version(self) -> int:
        return self._bits.bit_length()

    @classmethod
    def from_versions(cls, *versions: int) -> Self:
        bits = 0
        for version in versions:
            bits |= cls._version_bit(version, str(version), InvalidVersionError)
        if not bits:
            raise ValueError('At least one version must be provided')
        return cls(bits)

    @classmethod
    def from_text(cls, text: str) -> Self:
        bits = 0
        for token in text.split(','):
            if '-' in token:
                low_text, _, high_text = token.partition('-')
                low = cls._version_number(low_text, token, InvalidVersionRangeError)
                high = cls._version_number(high_text, token, InvalidVersionRangeError)
                if low >= high:
                    raise InvalidVersionRangeError(token)
                bits |= cls._version_bit(low, token, InvalidVersionRangeError)
                bits |= cls._version_bit(high, token, InvalidVersionRangeError)
                bits |= ((1 << (high - low + 1)) - 1) << (low - 1)
            else:
                version = cls._version_number(token, token, InvalidVersionError)
                bits |= cls._version_bit(version, token, InvalidVersionError)
        return cls(bits)

    def to_text(self) -> str:
        return str(self)

    def max_matching(self, other: Self) -> int:
        """Return the highest version that is supported by both sets"""
        common = self._bits & other._bits
        if not common:
            raise NoMatchingVersionError(self, other)
        return common.bit_length()

    @staticmethod
    def _version_number(text: str, token: str, error: type[InvalidVersionError | InvalidVersionRangeError]) -> int:
        if not text.isascii() or not text.isdigit() or len(text.lstrip('0')) > 3:  # noqa: PLR2004
            raise error(token)
        return int(text)

    @classmethod
    def _version_bit(cls, version: int, token: str, error: type[InvalidVersionError | InvalidVersionRangeError]) -> int:
        # The bound check must come before the shift (version 0 would shift by -1)
        if not cls.MIN_VERSION <= version <= cls.MAX_VERSION:
            raise error(token)
        return 1 << (version - 1)
