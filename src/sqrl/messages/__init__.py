# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
SQRL message structure.

   A SQRL authentication is a chain of request/response exchanges between
   the client and the server. The client sends its request as a form-style
   query string with the following fields:

     client=<base64(client parameters)>
     &server=<base64(server data)>
     &ids=<identity signature>
     [&pids=<previous identity signature>]
     [&urs=<unlock request signature>]

   The client parameters and the server responses are blocks of newline
   separated key=value lines, transported as URL-safe base64 without padding.
   The server data is what the server sent last: the sqrl:// URL that started
   the exchange for the first request, or the previous server response for
   the following ones. It is echoed exactly as it was received.

   The signatures are computed over the concatenation of the base64 text of
   the client parameters and of the server data, as they appear on the wire.

"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from ipaddress import ip_address
from typing import ClassVar, Self
from urllib.parse import parse_qs, urlsplit

import idna
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .datamodel import (
    ClientCommand,
    OptionList,
    OptionListAdapter,
    PublicKey,
    QueryCodec,
    QueryStringAdapter,
    Signature,
    TransactionFlag,
    UInt8Adapter,
    decode_envelope,
    encode_envelope,
)
from .elements import AnnotatedStructure, Element, OptionalElement
from .exceptions import (
    InvalidChainDataError,
    InvalidURLError,
    InvariantViolationError,
    MissingCommandError,
    MissingIdentityKeyError,
    MissingUnlockKeysError,
    MissingUnlockRequestSignatureError,
    PreviousIdentityMismatchError,
    ProtocolError,
)
from .versions import ProtocolVersion

__all__ = (  # noqa: RUF022
    # Protocol constants
    'SQRL_SCHEME',
    'PROTOCOL_VERSIONS',
    'SUPPORTED_VERSIONS',

    # URLs
    'SqrlURL',

    # Message blocks
    'ServerResponse',
    'ClientParameters',

    # Server data (the link to the previous step of the exchange)
    'ServerData',
    'BootstrapURL',
    'PriorResponse',

    # Toplevel structures
    'ClientRequest',
)


logger = logging.getLogger(__name__)


SQRL_SCHEME = 'sqrl'  # The URL scheme of SQRL URLs
PROTOCOL_VERSIONS = '1'  # The protocol versions that are implemented

SUPPORTED_VERSIONS = ProtocolVersion.from_text(PROTOCOL_VERSIONS)


# URLs

class SqrlURL:
    """A sqrl:// URL, as presented to the client to start an authentication"""

    __slots__ = '_text', '_hostname', '_path', '_query'

    _text: str
    _hostname: str
    _path: str
    _query: str

    def __init__(self, url: str, /) -> None:
        try:
            parts = urlsplit(url)
            hostname = parts.hostname
            parts.port  # noqa: B018 (raises ValueError for an invalid port)
        except ValueError as exc:
            raise InvalidURLError(f'Invalid sqrl url {url!r}: {exc}') from exc
        if parts.scheme.lower() != SQRL_SCHEME:
            raise InvalidURLError(f'Invalid sqrl url, incorrect protocol: {url!r}')
        if not hostname:
            raise InvalidURLError(f'Invalid sqrl url, missing domain: {url!r}')
        try:
            ip_address(hostname)
        except ValueError:
            pass
        else:
            raise InvalidURLError(f'Invalid sqrl url, the host must be a domain name, not an IP address: {url!r}')
        try:
            idna.encode(hostname, uts46=True)
        except idna.IDNAError as exc:
            raise InvalidURLError(f'Invalid sqrl url, invalid domain name {hostname!r}: {exc}') from exc
        object.__setattr__(self, '_text', url)
        object.__setattr__(self, '_hostname', hostname)
        object.__setattr__(self, '_path', parts.path)
        object.__setattr__(self, '_query', parts.query)

    def __setattr__(self, name: str, value: object, /) -> None:
        raise AttributeError(f'{self.__class__.__name__} objects are immutable')

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._text!r})'

    def __str__(self) -> str:
        return self._text

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SqrlURL):
            return self._text == other._text
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._text)

    @property
    def domain(self) -> str:
        return self._hostname.lower()

    @property
    def path(self) -> str:
        return self._path

    @property
    def auth_domain(self) -> str:
        """The domain and path that identify the site when deriving the site specific identity"""
        return self.domain + self._path.removesuffix('/')

    @property
    def nut(self) -> str | None:
        values = parse_qs(self._query).get('nut')
        return values[-1] if values else None


# Message blocks

class ServerResponse(AnnotatedStructure):
    protocol_version: Element[ProtocolVersion] = Element(ProtocolVersion, key='ver', default=SUPPORTED_VERSIONS)
    nut: Element[str] = Element(str, key='nut')
    transaction_flags: Element[TransactionFlag] = Element(TransactionFlag, key='tif')
    query_path: Element[str] = Element(str, key='qry')
    success_url: OptionalElement[str] = OptionalElement(str, key='url')
    cancel_url: OptionalElement[str] = OptionalElement(str, key='can')
    secret_index: OptionalElement[str] = OptionalElement(str, key='sin')
    server_unlock_key: OptionalElement[str] = OptionalElement(str, key='suk')
    ask: OptionalElement[str] = OptionalElement(str, key='ask')


class ClientParameters(AnnotatedStructure):
    protocol_version: Element[ProtocolVersion] = Element(ProtocolVersion, key='ver', default=SUPPORTED_VERSIONS)
    command: Element[ClientCommand] = Element(ClientCommand, key='cmd', missing_error=MissingCommandError)
    identity_key: Element[PublicKey] = Element(PublicKey, key='idk', missing_error=MissingIdentityKeyError)
    options: OptionalElement[OptionList] = OptionalElement(OptionList, key='opt', adapter=OptionListAdapter)
    button: OptionalElement[int] = OptionalElement(int, key='btn', adapter=UInt8Adapter)
    previous_identity_key: OptionalElement[PublicKey] = OptionalElement(PublicKey, key='pidk')
    index_secret: OptionalElement[str] = OptionalElement(str, key='ins')
    previous_index_secret: OptionalElement[str] = OptionalElement(str, key='pins')
    server_unlock_key: OptionalElement[str] = OptionalElement(str, key='suk')
    verify_unlock_key: OptionalElement[str] = OptionalElement(str, key='vuk')

    def validate(self) -> None:
        """Check the consistency of the client parameters (they have no cross field constraints of their own)"""


# Server data

class ServerData(ABC):
    """
    The server data that a client request is chained to.

    This is either the SQRL URL that started the exchange or the response
    the server sent to the previous request. Either way, to_base64() gives
    back the exact text the client received, which is what gets signed.
    """

    __slots__ = ()

    @classmethod
    def from_base64(cls, data: str) -> 'BootstrapURL | PriorResponse':
        text = decode_envelope(data)
        try:
            return BootstrapURL(SqrlURL(text))
        except InvalidURLError as exc:
            logger.debug('Server data is not a SQRL URL (%s), trying a server response', exc)
        try:
            return PriorResponse(ServerResponse.from_text(text), data)
        except ProtocolError as exc:
            logger.debug('Server data is not a server response either: %s', exc)
            raise InvalidChainDataError(text) from exc

    @abstractmethod
    def to_base64(self) -> str: ...


@dataclass(frozen=True, slots=True)
class BootstrapURL(ServerData):
    url: SqrlURL

    def to_base64(self) -> str:
        return encode_envelope(str(self.url))


@dataclass(frozen=True, slots=True)
class PriorResponse(ServerData):
    response: ServerResponse
    original: str  # the base64 text as it was received

    @classmethod
    def from_response(cls, response: ServerResponse) -> Self:
        return cls(response, response.to_base64())

    def to_base64(self) -> str:
        return self.original


class ClientParametersAdapter:
    @staticmethod
    def from_text(text: str, /) -> ClientParameters:
        return ClientParameters.from_base64(text)

    @staticmethod
    def to_text(value: ClientParameters, /) -> str:
        return value.to_base64()

    @staticmethod
    def validate(value: ClientParameters, /) -> ClientParameters:
        if not isinstance(value, ClientParameters):
            raise TypeError(f'Expected a {ClientParameters.__qualname__!r} value, got {value.__class__.__qualname__!r}')
        return value


class ServerDataAdapter:
    @staticmethod
    def from_text(text: str, /) -> ServerData:
        return ServerData.from_base64(text)

    @staticmethod
    def to_text(value: ServerData, /) -> str:
        return value.to_base64()

    @staticmethod
    def validate(value: ServerData, /) -> ServerData:
        if not isinstance(value, ServerData):
            raise TypeError(f'Expected a {ServerData.__qualname__!r} value, got {value.__class__.__qualname__!r}')
        return value


# Toplevel structures

class ClientRequest(AnnotatedStructure, codec=QueryCodec):
    client_params: Element[ClientParameters] = Element(ClientParameters, key='client', adapter=ClientParametersAdapter)
    server_data: Element[ServerData] = Element(ServerData, key='server', adapter=ServerDataAdapter)
    identity_signature: Element[Signature] = Element(Signature, key='ids')
    previous_identity_signature: OptionalElement[Signature] = OptionalElement(Signature, key='pids')
    unlock_request_signature: OptionalElement[str] = OptionalElement(str, key='urs', adapter=QueryStringAdapter)

    _unlock_commands: ClassVar[frozenset[ClientCommand]] = frozenset({ClientCommand.ENABLE, ClientCommand.REMOVE})

    @classmethod
    def sign(cls, client_params: ClientParameters, server_data: ServerData, identity_key: Ed25519PrivateKey, *, previous_identity_key: Ed25519PrivateKey | None = None, unlock_request_signature: str | None = None) -> Self:
        """Create a request signed with the identity key (and the previous identity key if given)"""
        if PublicKey.from_key(identity_key) != client_params.identity_key:
            raise ValueError('The identity key does not match the identity public key (idk) in the client parameters')
        if previous_identity_key is not None and PublicKey.from_key(previous_identity_key) != client_params.previous_identity_key:
            raise ValueError('The previous identity key does not match the previous identity public key (pidk) in the client parameters')
        payload = (client_params.to_base64() + server_data.to_base64()).encode()
        return cls(
            client_params=client_params,
            server_data=server_data,
            identity_signature=Signature(identity_key.sign(payload)),
            previous_identity_signature=None if previous_identity_key is None else Signature(previous_identity_key.sign(payload)),
            unlock_request_signature=unlock_request_signature,
        )

    def signed_payload(self) -> str:
        """The text that the identity signatures are computed over (the client and server blocks as they were received)"""
        return self.client_params.to_base64() + self.server_data.to_base64()

    def validate(self) -> None:
        """Check the constraints between the request fields, stopping at the first one that is not met"""
        try:
            self._check_constraints()
        except InvariantViolationError as exc:
            logger.debug('Invalid client request with idk=%s: %s', self.client_params.identity_key.to_text(), exc)
            raise

    def _check_constraints(self) -> None:
        params = self.client_params
        params.validate()

        if self.previous_identity_signature is not None and params.previous_identity_key is None:
            raise PreviousIdentityMismatchError('Previous identity signature (pids) is set, but no previous identity key (pidk) is set')
        if self.previous_identity_signature is None and params.previous_identity_key is not None:
            raise PreviousIdentityMismatchError('Previous identity key (pidk) is set, but no previous identity signature (pids) is set')

        if params.command in self._unlock_commands and self.unlock_request_signature is None:
            raise MissingUnlockRequestSignatureError(f'The {params.command} command requires the unlock request signature (urs)')

        match self.server_data:
            case PriorResponse(response=response) if TransactionFlag.CURRENT_ID_MATCH not in response.transaction_flags:
                if params.server_unlock_key is None:
                    raise MissingUnlockKeysError('suk', 'The identity is not known to the server, so the server unlock key (suk) must be included')
                if params.verify_unlock_key is None:
                    raise MissingUnlockKeysError('vuk', 'The identity is not known to the server, so the verify unlock key (vuk) must be included')

    def verify_signatures(self) -> None:
        """Verify the identity signature and, if present, the previous identity signature"""
        payload = self.signed_payload()
        params = self.client_params
        try:
            params.identity_key.verify(self.identity_signature, payload)
            if self.previous_identity_signature is not None and params.previous_identity_key is not None:
                params.previous_identity_key.verify(self.previous_identity_signature, payload)
        except ProtocolError as exc:
            logger.debug('Signature verification failed for client request with idk=%s: %s', params.identity_key.to_text(), exc)
            raise
