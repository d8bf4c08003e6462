# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


__all__ = (  # noqa: RUF022
    'ProtocolError',

    'MalformedWireDataError',
    'MissingFieldError',
    'BlankFieldError',
    'MalformedLineError',
    'InvalidFieldValueError',
    'InvalidStatusError',

    'InvalidEncodingError',
    'InvalidKeyMaterialError',
    'MissingIdentityKeyError',

    'InvalidVersionSpecError',
    'InvalidVersionError',
    'InvalidVersionRangeError',
    'NoMatchingVersionError',

    'UnknownTokenError',
    'UnknownCommandError',
    'InvalidOptionError',
    'MissingCommandError',

    'InvalidURLError',
    'InvalidChainDataError',

    'InvariantViolationError',
    'PreviousIdentityMismatchError',
    'MissingUnlockRequestSignatureError',
    'MissingUnlockKeysError',

    'InvalidSignatureError',
)


class ProtocolError(ValueError):
    """Base class for all the errors raised while handling SQRL messages."""


# Wire data structure

class MalformedWireDataError(ProtocolError):
    """Raised when the key/value structure of a message cannot be read."""


class MissingFieldError(MalformedWireDataError):
    """Raised when a message is missing one of its required fields."""

    def __init__(self, key: str, message: str | None = None) -> None:
        super().__init__(message or f'Missing required field {key!r}')
        self.key = key


class BlankFieldError(MissingFieldError):
    """Raised when a required field is present but has no value."""

    def __init__(self, key: str) -> None:
        super().__init__(key, f'Required field {key!r} has a blank value')


class MalformedLineError(MalformedWireDataError):
    """Raised when a line (or query token) is not a key=value pair."""

    def __init__(self, line: str) -> None:
        super().__init__(f'Invalid key/value data: {line!r}')
        self.line = line


class InvalidFieldValueError(MalformedWireDataError):
    """Raised when a field value cannot be converted to the field type."""

    def __init__(self, value: str, expected: str) -> None:
        super().__init__(f'Invalid value {value!r} (expected {expected})')
        self.value = value


class InvalidStatusError(MalformedWireDataError):
    """Raised when the transaction information flags value is not a 16-bit decimal number."""

    def __init__(self, value: str) -> None:
        super().__init__(f'Unable to parse the server response status code (tif): {value!r}')
        self.value = value


# Encoding and key material

class InvalidEncodingError(ProtocolError):
    """Raised when data is not valid unpadded URL-safe base64 or valid UTF-8."""


class InvalidKeyMaterialError(ProtocolError):
    """Raised when a public key or a signature has the wrong size or cannot be decoded."""


class MissingIdentityKeyError(MissingFieldError, InvalidKeyMaterialError):
    """Raised when the client parameters have no identity key (idk)."""

    def __init__(self, key: str) -> None:
        super().__init__(key, f'Missing or blank identity key field {key!r}')


# Protocol versions

class InvalidVersionSpecError(ProtocolError):
    """Raised when a protocol version specification cannot be parsed."""

    def __init__(self, spec: str, message: str) -> None:
        super().__init__(message)
        self.spec = spec


class InvalidVersionError(InvalidVersionSpecError):
    """Raised when a version number is not an integer in the supported range."""

    def __init__(self, spec: str) -> None:
        super().__init__(spec, f'Invalid version number: {spec!r}')


class InvalidVersionRangeError(InvalidVersionSpecError):
    """Raised when a version range has invalid or inverted bounds."""

    def __init__(self, spec: str) -> None:
        super().__init__(spec, f'Invalid version range: {spec!r}')


class NoMatchingVersionError(ProtocolError):
    """Raised when two version sets have no version in common."""

    def __init__(self, ours: object, theirs: object) -> None:
        super().__init__(f'No matching supported version! Ours: {ours} Theirs: {theirs}')
        self.ours = ours
        self.theirs = theirs


# Enumerated tokens

class UnknownTokenError(ProtocolError):
    """Raised when a token is not part of a fixed vocabulary."""

    def __init__(self, token: str, message: str) -> None:
        super().__init__(message)
        self.token = token


class UnknownCommandError(UnknownTokenError):
    """Raised when a client request uses an unknown command."""

    def __init__(self, token: str) -> None:
        super().__init__(token, f'Unknown client command: {token!r}')


class InvalidOptionError(UnknownTokenError):
    """Raised when a client request uses an unknown option."""

    def __init__(self, token: str) -> None:
        super().__init__(token, f'Invalid client option: {token!r}')


class MissingCommandError(MissingFieldError, UnknownCommandError):
    """Raised when the client parameters have no command (cmd)."""

    token: str | None

    def __init__(self, key: str) -> None:
        # the cooperative chain would pass the message to UnknownCommandError as its token
        ProtocolError.__init__(self, f'Missing or blank client command field {key!r}')
        self.key = key
        self.token = None


# Server data

class InvalidURLError(ProtocolError):
    """Raised when a string is not a valid SQRL URL."""


class InvalidChainDataError(ProtocolError):
    """Raised when the server data is neither a SQRL URL nor a server response."""

    def __init__(self, text: str) -> None:
        super().__init__(f'Invalid server data: {text!r}')
        self.text = text


# Cross field checks

class InvariantViolationError(ProtocolError):
    """Raised when the fields of a client request are inconsistent with each other."""


class PreviousIdentityMismatchError(InvariantViolationError):
    """Raised when only one of the previous identity key and previous identity signature is present."""


class MissingUnlockRequestSignatureError(InvariantViolationError):
    """Raised when an enable or remove command lacks the unlock request signature."""


class MissingUnlockKeysError(InvariantViolationError):
    """Raised when the server unlock key or the verify unlock key is required but missing."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


# Signatures

class InvalidSignatureError(ProtocolError):
    """Raised when a signature does not verify against the signed payload."""
