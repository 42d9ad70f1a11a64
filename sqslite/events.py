"""
Event definitions and the codec layer.

An event definition binds a type name to a codec that validates raw input
on publish and decodes stored bytes on receipt. Definitions are built with
:func:`builder`, which defaults to pydantic validation:

    event = builder()
    hello = event("app.hello", Hello)
    await queue.publish(hello, {"foo": "bar"})
"""

import json
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError

from sqslite.exceptions import EventValidationError, UnknownEventTypeError


class Codec(Protocol):
    """Validates, encodes and decodes the properties of one event type."""

    def validate(self, raw: Any) -> Any: ...

    def encode(self, value: Any) -> bytes: ...

    def decode(self, data: bytes) -> Any: ...


class PydanticCodec:
    """Codec backed by a pydantic ``TypeAdapter``."""

    def __init__(self, schema: Any):
        self.schema = schema
        self._adapter = TypeAdapter(schema)

    def validate(self, raw: Any) -> Any:
        return self._adapter.validate_python(raw)

    def encode(self, value: Any) -> bytes:
        return self._adapter.dump_json(value)

    def decode(self, data: bytes) -> Any:
        return self._adapter.validate_json(data)


class JsonCodec:
    """Pass-through codec for bare type strings: any JSON value is accepted."""

    def validate(self, raw: Any) -> Any:
        return raw

    def encode(self, value: Any) -> bytes:
        return json.dumps(value).encode("utf-8")

    def decode(self, data: bytes) -> Any:
        return json.loads(data.decode("utf-8"))


json_codec = JsonCodec()

Validator = Callable[[Any], Codec]
MetadataFactory = Callable[[str, Any], dict[str, Any]]


def pydantic_validator(schema: Any) -> Codec:
    """
    Build a codec for any type pydantic can validate (models, TypedDicts, ...).

    On Python < 3.12 pydantic only accepts ``typing_extensions.TypedDict``.
    """
    return PydanticCodec(schema)


@dataclass(frozen=True)
class Event:
    """A validated event ready to be enqueued."""

    type: str
    properties: Any
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EventDefinition:
    """
    A named event type and the codec for its properties.

    ``metadata`` is either a callable ``(type, properties) -> dict`` or a codec
    validating metadata the publisher passes in.
    """

    type: str
    codec: Codec = json_codec
    metadata: MetadataFactory | Codec | None = None

    def create(self, properties: Any, metadata: Any = None) -> Event:
        """
        Validate properties (and metadata) into an event.

        Raises:
            EventValidationError: If validation fails.
        """
        try:
            value = self.codec.validate(properties)
            if self.metadata is None:
                meta: Any = {}
            elif callable(self.metadata):
                meta = self.metadata(self.type, value)
            else:
                meta = self.metadata.validate(metadata or {})
        except ValidationError as e:
            raise EventValidationError(self.type, e.errors()) from e

        return Event(type=self.type, properties=value, metadata=meta)

    def encode(self, value: Any) -> bytes:
        return self.codec.encode(value)

    def decode(self, data: bytes) -> Any:
        return self.codec.decode(data)


def builder(
    validator: Validator = pydantic_validator,
    metadata: MetadataFactory | Any | None = None,
) -> Callable[[str, Any], EventDefinition]:
    """
    Create an event factory sharing one validator and metadata rule.

    Args:
        validator: Turns a schema into a codec.
        metadata: Callable producing metadata from (type, properties), or a
            schema the publisher's metadata must satisfy.

    Returns:
        A function ``event(type, schema) -> EventDefinition``.
    """
    if metadata is None or (callable(metadata) and not isinstance(metadata, type)):
        meta_rule = metadata
    else:
        meta_rule = validator(metadata)

    def event(type: str, schema: Any) -> EventDefinition:
        return EventDefinition(type=type, codec=validator(schema), metadata=meta_rule)

    return event


def resolve(definition: "EventDefinition | str") -> EventDefinition:
    """Turn a bare type string into a pass-through JSON definition."""
    if isinstance(definition, str):
        return EventDefinition(type=definition)
    return definition


class EventRegistry:
    """Plain mapping from type name to event definition."""

    def __init__(self, definitions: Iterable[EventDefinition | str] = ()):
        self._definitions: dict[str, EventDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: EventDefinition | str) -> EventDefinition:
        definition = resolve(definition)
        self._definitions[definition.type] = definition
        return definition

    def get(self, type: str) -> EventDefinition:
        """
        Look up the definition for a type.

        Raises:
            UnknownEventTypeError: If the type is not registered.
        """
        try:
            return self._definitions[type]
        except KeyError:
            raise UnknownEventTypeError(type) from None

    @property
    def types(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, type: object) -> bool:
        return type in self._definitions

    def __iter__(self) -> Iterator[EventDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)
