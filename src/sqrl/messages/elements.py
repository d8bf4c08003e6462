# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import Enum
from inspect import Parameter, Signature
from types import new_class
from typing import ClassVar, Self, cast, dataclass_transform, overload

from .datamodel import AdapterRegistry, KeyValueCodec, NewlineCodec, TextAdapter, TextProtocol, decode_envelope, encode_envelope
from .exceptions import BlankFieldError, MissingFieldError

__all__ = (  # noqa: RUF022
    'Structure',
    'AnnotatedStructure',

    'Element',
    'OptionalElement',
)


class Structure:  # noqa: PLW1641
    """
    A message made of key=value fields.

    The fields are declared as element descriptors on the class and they
    are written to text in the order in which they were declared. The way
    the key=value pairs are joined together is given by the codec, which
    is selected using the codec class keyword argument and is inherited.

    Structures are immutable. A field is set once, either by the constructor
    or by the parser, and replace() is used to get a modified copy.

    A structure that was parsed from text writes back that same text, so
    that signed content is reproduced byte for byte regardless of the line
    endings and the key order used by whoever produced it. Structures that
    were built (including those returned by replace()) are serialized from
    their fields.
    """

    __signature__: ClassVar[Signature] = Signature()

    _fields_: ClassVar[dict[str, 'FieldDescriptor']] = {}
    _codec_: ClassVar[type[KeyValueCodec]] = NewlineCodec

    _all_arguments: ClassVar[frozenset[str]]
    _mandatory_arguments: ClassVar[frozenset[str]]
    _default_arguments: ClassVar[dict[str, object]]

    def __new__(cls, **kw: object) -> Self:
        if not cls._all_arguments.issuperset(kw):
            raise TypeError(f'Got an unexpected keyword argument {next(iter(set(kw) - cls._all_arguments))!r}')
        if not cls._mandatory_arguments.issubset(kw):
            raise TypeError(f'Missing a required keyword argument {next(iter(cls._mandatory_arguments - set(kw)))!r}')
        return super().__new__(cls)

    def __init__(self, **kw: object) -> None:
        kw = self._default_arguments | kw
        for name in self._fields_:
            setattr(self, name, kw[name])

    def __init_subclass__(cls, *, codec: type[KeyValueCodec] | None = None, **kw: object) -> None:
        super().__init_subclass__(**kw)

        if codec is not None:
            cls._codec_ = codec

        # all the fields on this structure (both inherited and locally defined)
        fields = cls._fields_ | {name: value for name, value in cls.__dict__.items() if isinstance(value, FieldDescriptor)}

        cls._fields_ = fields

        cls.__signature__ = Signature(parameters=[descriptor.signature_parameter for descriptor in fields.values()])
        cls._all_arguments = frozenset(cls.__signature__.parameters)
        cls._mandatory_arguments = frozenset(p.name for p in cls.__signature__.parameters.values() if p.default is Parameter.empty)
        cls._default_arguments = {p.name: p.default for p in cls.__signature__.parameters.values() if p.default is not Parameter.empty}

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({', '.join(f'{name}={_reprproxy(getattr(self, name))!r}' for name in self._fields_)})'

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Structure):
            return other.__class__ is self.__class__ and all(getattr(self, name) == getattr(other, name) for name in self._fields_)
        return NotImplemented

    @classmethod
    def from_text(cls, text: str) -> Self:
        data = cls._codec_.decode(text)
        instance = super().__new__(cls)
        for field in cls._fields_.values():
            field.from_mapping(instance, data)
        instance.__dict__['_text_'] = text
        return instance

    def to_text(self) -> str:
        if (text := self.__dict__.get('_text_')) is not None:
            return text
        return self._codec_.encode(item for field in self._fields_.values() if (item := field.to_item(self)) is not None)

    @classmethod
    def from_base64(cls, data: str) -> Self:
        return cls.from_text(decode_envelope(data))

    def to_base64(self) -> str:
        return encode_envelope(self.to_text())

    def replace(self, **changes: object) -> Self:
        """Return a copy of this structure with the given fields changed"""
        return self.__class__(**({name: getattr(self, name) for name in self._fields_} | changes))


# Helpers

class _reprproxy:  # noqa: N801
    # Provide better representation for certain types which can be evaluated to recreate the object.

    def __init__(self, value: object) -> None:
        self.value = value

    def __repr__(self) -> str:
        match self.value:
            case Enum() as value:  # this also covers Flag which is a subclass of Enum
                if value.name is None:  # an empty Flag
                    return f'{value.__class__.__qualname__}({value.value!r})'
                return f'{value.__class__.__qualname__}.{value.name}'
            case type() as value:
                return value.__qualname__
            case value:
                return repr(value)

    __str__ = __repr__


def _protocol2adapter[T: TextProtocol](proto: type[T]) -> type[TextAdapter[T]]:
    # Turn a TextProtocol into a TextAdapter by creating a stand-in adapter on the fly.
    #
    # Adapters have an extra validate() method that protocols don't have. The stand-in
    # adapter adds one that only checks that the value has the protocol type.

    def validate(value: T, /) -> T:
        if not isinstance(value, proto):
            raise TypeError(f'Expected a {proto.__qualname__!r} value, got {value.__class__.__qualname__!r}')
        return value

    def prepare(ns: dict) -> None:
        ns['from_text'] = staticmethod(proto.from_text)
        ns['to_text'] = staticmethod(proto.to_text)
        ns['validate'] = staticmethod(validate)

    adapter = new_class(f'{proto.__name__}AdapterStandIn', (), exec_body=prepare)
    adapter.__module__ = __name__
    adapter.__qualname__ = f'_protocol2adapter.<generated>.{adapter.__name__}'

    return cast(type[TextAdapter[T]], adapter)


type TextAdapterType[T] = type[TextAdapter[T]]


# Field descriptor specifications

class FieldDescriptor(ABC):
    name: str | None
    key: str

    @property
    @abstractmethod
    def signature_parameter(self) -> Parameter: ...

    @abstractmethod
    def from_mapping(self, instance: Structure, data: Mapping[str, str]) -> None: ...

    @abstractmethod
    def to_item(self, instance: Structure) -> tuple[str, str] | None: ...


class ElementDescriptor[T](FieldDescriptor):
    name: str | None
    key: str
    type: type[T]
    default: T
    adapter: TextAdapterType[T]
    provided_adapter: TextAdapterType[T] | None

    def __init__(self, element_type: type[T], /, *, key: str, default: T = NotImplemented, adapter: TextAdapterType[T] | None = None) -> None:
        self.name = None
        self.key = key
        self.type = element_type
        self.default = default
        self.provided_adapter = adapter
        if adapter is None:
            if issubclass(element_type, TextProtocol):
                adapter = _protocol2adapter(element_type)
            else:
                adapter = AdapterRegistry.get_adapter(element_type)
        if adapter is None:
            raise TypeError('Either the element type must implement the TextProtocol or an adapter must be provided')
        self.adapter = adapter

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({_reprproxy(self.type)!r}, key={self.key!r}, default={self.default!r}, adapter={_reprproxy(self.provided_adapter)!r})'

    def __set_name__(self, owner: type[Structure], name: str) -> None:
        if self.name is None:
            self.name = name
        elif name != self.name:
            raise TypeError(f'Cannot assign the same {self.__class__.__qualname__!r} to two different names: {self.name!r} and {name!r}')

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> T: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | T:
        if instance is None:
            return self
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        try:
            return instance.__dict__[self.name]
        except KeyError as exc:
            raise AttributeError(f'Attribute {self.name!r} of object {instance.__class__.__qualname__!r} is not set') from exc

    def __set__(self, instance: Structure, value: T) -> None:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        if self.name in instance.__dict__:
            raise AttributeError(f'Attribute {self.name!r} of {instance.__class__.__qualname__!r} object is read-only (use replace() to get a modified copy)')
        instance.__dict__[self.name] = self._validate(value)

    def __delete__(self, instance: Structure) -> None:
        raise AttributeError(f'Attribute {self.name!r} of {instance.__class__.__qualname__!r} object cannot be deleted')

    def _validate(self, value: T) -> T:
        return self.adapter.validate(value)

    def _from_text(self, instance: Structure, text: str) -> T:
        try:
            return self.adapter.from_text(text)
        except ValueError as exc:
            exc.add_note(f'While reading the {instance.__class__.__qualname__}.{self.name} element ({self.key}={text})')
            raise


# Field descriptor implementations

class Element[T](ElementDescriptor[T]):
    """
    A required field. It must be present and have a non-blank value in the text it is parsed from.

    A field that is absent raises MissingFieldError and one that is blank raises BlankFieldError,
    unless missing_error is given, in which case that is raised for both.
    """

    def __init__(self, element_type: type[T], /, *, key: str, default: T = NotImplemented, adapter: TextAdapterType[T] | None = None, missing_error: type[MissingFieldError] | None = None) -> None:
        super().__init__(element_type, key=key, default=default, adapter=adapter)
        self.missing_error = missing_error

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        kwds = {} if self.default is NotImplemented else {'default': self.default}
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type, **kwds)

    def from_mapping(self, instance: Structure, data: Mapping[str, str]) -> None:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        text = data.get(self.key)
        if text is None:
            raise (self.missing_error or MissingFieldError)(self.key)
        if not text:
            raise (self.missing_error or BlankFieldError)(self.key)
        instance.__dict__[self.name] = self._from_text(instance, text)

    def to_item(self, instance: Structure) -> tuple[str, str]:
        return self.key, self.adapter.to_text(self.__get__(instance))


class OptionalElement[T](ElementDescriptor[T | None]):
    """An optional field. It is None when absent and it is left out when writing to text."""

    def __init__(self, element_type: type[T], /, *, key: str, adapter: TextAdapterType[T] | None = None) -> None:
        super().__init__(element_type, key=key, default=None, adapter=adapter)  # type: ignore[arg-type]

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({_reprproxy(self.type)!r}, key={self.key!r}, adapter={_reprproxy(self.provided_adapter)!r})'

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type | None, default=None)

    def from_mapping(self, instance: Structure, data: Mapping[str, str]) -> None:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        text = data.get(self.key)
        instance.__dict__[self.name] = None if text is None else self._from_text(instance, text)

    def to_item(self, instance: Structure) -> tuple[str, str] | None:
        value = self.__get__(instance)
        if value is None:
            return None
        return self.key, self.adapter.to_text(value)

    def _validate(self, value: T | None) -> T | None:
        return None if value is None else self.adapter.validate(value)


@dataclass_transform(kw_only_default=True, field_specifiers=(Element, OptionalElement))
class AnnotatedStructure(Structure):
    pass
