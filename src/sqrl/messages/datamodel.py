# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import enum
from binascii import Error as BinasciiError
from binascii import a2b_base64, b2a_base64
from collections.abc import Buffer, Iterable, MutableMapping
from typing import ClassVar, Protocol, Self, SupportsBytes, SupportsIndex, overload, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from sqrl.python.types import StringEnum

from .exceptions import (
    InvalidEncodingError,
    InvalidFieldValueError,
    InvalidKeyMaterialError,
    InvalidOptionError,
    InvalidSignatureError,
    InvalidStatusError,
    MalformedLineError,
    UnknownCommandError,
)

__all__ = (  # noqa: RUF022
    # Envelope codec

    'base64_encode',
    'base64_decode',
    'encode_envelope',
    'decode_envelope',

    # Key/value codecs

    'KeyValueCodec',
    'NewlineCodec',
    'QueryCodec',

    # Protocols and adapters

    'TextProtocol',
    'TextAdapter',
    'AdapterRegistry',

    'StringAdapter',
    'QueryStringAdapter',
    'UInt8Adapter',
    'OptionListAdapter',

    # Types

    'Flag',
    'TransactionFlag',
    'ClientCommand',
    'ClientOption',
    'OptionList',

    'KeyMaterial',
    'PublicKey',
    'Signature',
)


# Envelope codec (URL-safe base64 without padding)

_base64_alphabet = frozenset('ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_')

_to_standard_alphabet = str.maketrans('-_', '+/')
_to_urlsafe_alphabet = bytes.maketrans(b'+/', b'-_')


def base64_encode(data: bytes | bytearray | memoryview, /) -> str:
    """Encode data as URL-safe base64 without padding"""
    return b2a_base64(data, newline=False).translate(_to_urlsafe_alphabet).rstrip(b'=').decode('ascii')


def base64_decode(data: str, /) -> bytes:
    """Decode URL-safe base64 without padding, rejecting anything that is not in canonical form"""
    if not _base64_alphabet.issuperset(data):
        raise InvalidEncodingError(f'Invalid character in base64 data: {data!r}')
    if len(data) % 4 == 1:
        raise InvalidEncodingError(f'Invalid base64 data length: {data!r}')
    try:
        decoded = a2b_base64((data + '=' * (-len(data) % 4)).translate(_to_standard_alphabet), strict_mode=True)
    except BinasciiError as exc:
        raise InvalidEncodingError(f'Cannot decode base64 data: {exc}') from exc
    if base64_encode(decoded) != data:  # the unused trailing bits must be zero
        raise InvalidEncodingError(f'Non-canonical base64 data: {data!r}')
    return decoded


def encode_envelope(payload: str, /) -> str:
    return base64_encode(payload.encode())


def decode_envelope(data: str, /) -> str:
    try:
        return base64_decode(data).decode()
    except UnicodeDecodeError as exc:
        raise InvalidEncodingError(f'Cannot decode bytes to string: {exc}') from exc


# Key/value codecs

class KeyValueCodec(Protocol):
    @staticmethod
    def decode(text: str, /) -> dict[str, str]: ...

    @staticmethod
    def encode(items: Iterable[tuple[str, str]], /) -> str: ...


class NewlineCodec:
    """The newline separated key=value lines used by the message blocks"""

    @staticmethod
    def decode(text: str, /) -> dict[str, str]:
        data = {}
        for line in text.split('\n'):
            if not line.strip():
                continue
            key, separator, value = line.partition('=')
            if not separator:
                raise MalformedLineError(line)
            data[key] = value.strip()
        return data

    @staticmethod
    def encode(items: Iterable[tuple[str, str]], /) -> str:
        return ''.join(f'\n{key}={value}' for key, value in items)


class QueryCodec:
    """The &-joined key=value pairs used by the client request query string"""

    @staticmethod
    def decode(text: str, /) -> dict[str, str]:
        data = {}
        for token in text.split('&'):
            key, separator, value = token.partition('=')
            if not separator:
                raise MalformedLineError(token)
            data[key] = value
        return data

    @staticmethod
    def encode(items: Iterable[tuple[str, str]], /) -> str:
        return '&'.join(f'{key}={value}' for key, value in items)


# Protocols

@runtime_checkable
class TextProtocol(Protocol):
    """The text protocol for SQRL message field values"""

    @classmethod
    def from_text(cls, text: str, /) -> Self: ...

    def to_text(self) -> str: ...


@runtime_checkable
class TextAdapter[T](Protocol):
    """Text protocol adapter for a SQRL message field value of type T"""

    @staticmethod
    def from_text(text: str, /) -> T: ...

    @staticmethod
    def to_text(value: T, /) -> str: ...

    @staticmethod
    def validate(value: T, /) -> T: ...


class AdapterRegistry[T]:
    _adapters: ClassVar[MutableMapping[type, type[TextAdapter]]] = {}

    @classmethod
    def associate(cls, data_type: type[T], adapter: type[TextAdapter[T]]) -> None:
        if issubclass(data_type, TextProtocol):
            raise TypeError('Adapters for types that already implement TextProtocol must be explicitly provided with the element descriptors.')
        cls._adapters[data_type] = adapter

    @classmethod
    def get_adapter(cls, data_type: type[T]) -> type[TextAdapter[T]] | None:
        return cls._adapters.get(data_type, None)


# Adapters

class StringAdapter:
    """Adapter for free form values that must survive a trip through a newline separated block"""

    @staticmethod
    def from_text(text: str, /) -> str:
        return text

    @staticmethod
    def to_text(value: str, /) -> str:
        return value

    @classmethod
    def validate(cls, value: str, /) -> str:
        if not isinstance(value, str):
            raise TypeError(f'Expected a string value, got {value.__class__.__qualname__!r}')
        if '\n' in value or '\r' in value:
            raise ValueError(f'String values cannot contain line breaks: {value!r}')
        if value != value.strip():
            raise ValueError(f'String values cannot have leading or trailing whitespace: {value!r}')
        return value


AdapterRegistry.associate(str, StringAdapter)


class QueryStringAdapter(StringAdapter):
    """Adapter for opaque values carried directly in the query string"""

    @classmethod
    def validate(cls, value: str, /) -> str:
        value = super().validate(value)
        if '&' in value:
            raise ValueError(f'Query string values cannot contain the & character: {value!r}')
        return value


class UInt8Adapter:
    @staticmethod
    def from_text(text: str, /) -> int:
        if not text.isascii() or not text.isdigit() or len(text) > 3 or int(text) > 255:  # noqa: PLR2004
            raise InvalidFieldValueError(text, 'an integer between 0 and 255')
        return int(text)

    @staticmethod
    def to_text(value: int, /) -> str:
        return str(value)

    @staticmethod
    def validate(value: int, /) -> int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f'Expected an integer value, got {value.__class__.__qualname__!r}')
        if value < 0 or value.bit_length() > 8:  # noqa: PLR2004
            raise ValueError(f'Value is out of range for unsigned 8-bits integer: {value!r}')
        return value


# Enumeration and flag types

class Flag(enum.IntFlag):
    _bits_: ClassVar[int]

    def __init_subclass__(cls, *, bits: int = 16, **kw: object) -> None:
        cls._bits_ = bits
        super().__init_subclass__(**kw)

    @classmethod
    def from_text(cls, text: str, /) -> Self:
        if not text.isascii() or not text.isdigit() or len(text.lstrip('0')) > len(str(2**cls._bits_)):
            raise InvalidStatusError(text)
        value = int(text)
        if value.bit_length() > cls._bits_:
            raise InvalidStatusError(text)
        return cls(value & sum(cls))  # bits that do not correspond to a flag are dropped

    def to_text(self) -> str:
        return str(int(self))


class TransactionFlag(Flag, bits=16):
    CURRENT_ID_MATCH = 0x1         # the identity key (idk) is known to the server
    PREVIOUS_ID_MATCH = 0x2        # the previous identity key (pidk) is known to the server
    IP_MATCH = 0x4                 # the request comes from the IP address that requested the nut
    SQRL_DISABLED = 0x8            # SQRL authentication is disabled for this identity
    FUNCTION_NOT_SUPPORTED = 0x10  # the server does not support the requested command
    TRANSIENT_ERROR = 0x20         # the request failed because of a transient error and should be retried
    COMMAND_FAILED = 0x40          # the server did not execute the command
    CLIENT_FAILURE = 0x80          # the request was malformed or invalid
    BAD_ID = 0x100                 # the identity used by the request does not match the one in the previous exchange
    IDENTITY_SUPERSEDED = 0x200    # the identity was replaced by a newer one


class ClientCommand(StringEnum):
    QUERY = 'query'      # find out which of the client identities is known to the server
    IDENT = 'ident'      # assert the client identity to the server
    DISABLE = 'disable'  # disable SQRL authentication for the identity
    ENABLE = 'enable'    # re-enable SQRL authentication for the identity
    REMOVE = 'remove'    # remove the identity from the server

    @classmethod
    def from_text(cls, text: str, /) -> Self:
        command = cls.lookup(text)
        if command is None:
            raise UnknownCommandError(text)
        return command

    def to_text(self) -> str:
        return self.value


class ClientOption(StringEnum):
    NO_IP_TEST = 'noiptest'              # do not require requests to come from the IP address that requested the nut
    SQRL_ONLY = 'sqrlonly'               # only allow SQRL authentication for the account
    HARD_LOCK = 'hardlock'               # do not allow side channel identity changes (email, backup codes, ...)
    CLIENT_PROVIDED_SESSION = 'cps'      # the client can hand over the logged in session to the browser
    SERVER_UNLOCK_KEY = 'suk'            # return the server unlock key for the identity

    @classmethod
    def from_text(cls, text: str, /) -> Self:
        option = cls.lookup(text)
        if option is None:
            raise InvalidOptionError(text)
        return option

    def to_text(self) -> str:
        return self.value


class OptionList(tuple[ClientOption, ...]):
    """The ~ separated list of client options, in the order they were given"""

    def __new__(cls, options: Iterable[ClientOption] = (), /) -> Self:
        instance = super().__new__(cls, options)
        for option in instance:
            if not isinstance(option, ClientOption):
                raise TypeError(f'Expected a {ClientOption.__qualname__!r} item, got {option!r}')
        return instance

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({list(self)!r})'


class OptionListAdapter:
    @staticmethod
    def from_text(text: str, /) -> OptionList:
        return OptionList(ClientOption.from_text(token) for token in text.split('~'))

    @staticmethod
    def to_text(value: OptionList, /) -> str:
        return '~'.join(option.to_text() for option in value)

    @staticmethod
    def validate(value: Iterable[ClientOption], /) -> OptionList:
        options = OptionList(value)
        if not options:
            raise ValueError('An option list must have at least one option (use None to omit the options)')
        return options


# Key material

class KeyMaterial(bytes):
    """Fixed size binary key material, represented as URL-safe base64 on the wire"""

    _size_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, size: int = NotImplemented, **kw: object) -> None:
        if size is not NotImplemented:
            cls._size_ = size
        super().__init_subclass__(**kw)

    @overload
    def __new__(cls, o: Iterable[SupportsIndex] | SupportsBytes | Buffer, /) -> Self: ...

    @overload
    def __new__(cls, string: str, /, encoding: str, errors: str = ...) -> Self: ...

    def __new__(cls, *args, **kw):
        if cls._size_ is NotImplemented:
            raise TypeError(f'Cannot instantiate key material type {cls.__qualname__!r} that does not define its size')
        instance = super().__new__(cls, *args, **kw)
        if len(instance) != cls._size_:
            raise InvalidKeyMaterialError(f'{cls.__qualname__!r} objects must have {cls._size_} bytes (got {len(instance)})')
        return instance

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}.from_text({self.to_text()!r})'

    @classmethod
    def from_text(cls, text: str, /) -> Self:
        try:
            data = base64_decode(text)
        except InvalidEncodingError as exc:
            raise InvalidKeyMaterialError(f'Failed to decode base64 encoded {cls.__qualname__} {text!r}: {exc}') from exc
        return cls(data)

    def to_text(self) -> str:
        return base64_encode(self)


class Signature(KeyMaterial, size=64):
    pass


class PublicKey(KeyMaterial, size=32):
    """An Ed25519 identity public key"""

    def __new__(cls, *args, **kw):
        instance = super().__new__(cls, *args, **kw)
        try:
            Ed25519PublicKey.from_public_bytes(bytes(instance))
        except ValueError as exc:
            raise InvalidKeyMaterialError(f'Failed to load public key {instance.to_text()!r}: {exc}') from exc
        return instance

    @classmethod
    def from_key(cls, key: Ed25519PublicKey | Ed25519PrivateKey) -> Self:
        if isinstance(key, Ed25519PrivateKey):
            key = key.public_key()
        return cls(key.public_bytes(Encoding.Raw, PublicFormat.Raw))

    def public_key(self) -> Ed25519PublicKey:
        return Ed25519PublicKey.from_public_bytes(bytes(self))

    def verify(self, signature: Signature, data: str | bytes) -> None:
        if isinstance(data, str):
            data = data.encode()
        try:
            self.public_key().verify(bytes(signature), data)
        except InvalidSignature as exc:
            raise InvalidSignatureError(f'The signature does not match the data for public key {self.to_text()!r}') from exc
