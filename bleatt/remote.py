"""Client-side view of a peer's GATT database: services, characteristics, descriptors."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, Union

from .pdu import Opcode
from .properties import Property
from .uuid import uuid_to_string

CCCD_UUID = "2902"
ATT_HEADER_SIZE = 3


class _AttClient(Protocol):
    """The ATT operations that remote attributes rely on."""

    def connected(self, handle: int) -> bool: ...

    def mtu(self, handle: int) -> int: ...

    def read_req(self, connection_handle: int, handle: int) -> bytes: ...

    def write_req(self, connection_handle: int, handle: int, data: bytes) -> bytes: ...

    def write_cmd(self, connection_handle: int, handle: int, data: bytes) -> None: ...


@dataclass(frozen=True)
class PeerAddress:
    """Address of a peer device: its address type and six address bytes."""

    address_type: int
    address: bytes

    def __post_init__(self) -> None:
        if len(self.address) != 6:
            raise ValueError("a device address is six bytes long")
        object.__setattr__(self, "address", bytes(self.address))


class CharacteristicEvent(Enum):
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    UPDATED = "updated"


CharacteristicEventHandler = Callable[[PeerAddress, "RemoteCharacteristic"], None]


class RemoteAttribute:
    """An attribute discovered on a peer, identified by its UUID text."""

    def __init__(self, uuid_bytes: bytes) -> None:
        self.uuid = uuid_to_string(bytes(uuid_bytes))
        self._ref_count = 0

    @property
    def ref_count(self) -> int:
        return self._ref_count

    def retain(self) -> int:
        self._ref_count += 1
        return self._ref_count

    def release(self) -> int:
        self._ref_count -= 1
        return self._ref_count

    def _dispose(self) -> None:
        """Release whatever this attribute holds once nothing holds it."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(uuid={self.uuid!r})"


def _response_ok(response: bytes) -> bool:
    return bool(response) and response[0] != Opcode.ERROR


class _ValueHolder:
    """Shared value storage for descriptors and characteristics."""

    _value: Optional[bytes]

    @property
    def value(self) -> bytes:
        return self._value if self._value is not None else b""

    def __len__(self) -> int:
        return len(self.value)

    def __getitem__(self, offset: int) -> int:
        if self._value is None:
            return 0
        return self._value[offset]

    def _clear_value(self) -> None:
        if self._value is not None:
            self._value = b""


def _capped(att: _AttClient, connection_handle: int, value: bytes) -> bytes:
    max_length = att.mtu(connection_handle) - ATT_HEADER_SIZE
    return bytes(value[:max(max_length, 0)])


def _read_value(att: _AttClient, connection_handle: int, handle: int) -> Optional[bytes]:
    response = att.read_req(connection_handle, handle)
    if not _response_ok(response):
        return None
    return bytes(response[1:])


class RemoteDescriptor(_ValueHolder, RemoteAttribute):
    """A descriptor of a peer's characteristic."""

    def __init__(self, uuid_bytes: bytes, connection_handle: int, handle: int, att: _AttClient) -> None:
        RemoteAttribute.__init__(self, uuid_bytes)
        self.connection_handle = connection_handle
        self.handle = handle
        self._att = att
        self._value = None

    def __getitem__(self, offset: int) -> int:
        return _ValueHolder.__getitem__(self, offset)

    def write_value(self, value: Union[bytes, str]) -> bool:
        """Write the value with a write request; True when the peer accepted it."""
        if isinstance(value, str):
            value = value.encode()
        if not self._att.connected(self.connection_handle):
            return False
        data = _capped(self._att, self.connection_handle, value)
        response = self._att.write_req(self.connection_handle, self.handle, data)
        if not _response_ok(response):
            return False
        self._value = data
        return True

    def read(self) -> bool:
        """Read the value from the peer; True on success."""
        if not self._att.connected(self.connection_handle):
            return False
        value = _read_value(self._att, self.connection_handle, self.handle)
        if value is None:
            self._clear_value()
            return False
        self._value = value
        return True


class RemoteCharacteristic(_ValueHolder, RemoteAttribute):
    """A characteristic of a peer's service, with its cached value and descriptors."""

    def __init__(
        self,
        uuid_bytes: bytes,
        connection_handle: int,
        start_handle: int,
        properties: int,
        value_handle: int,
        att: _AttClient,
    ) -> None:
        RemoteAttribute.__init__(self, uuid_bytes)
        self.connection_handle = connection_handle
        self.start_handle = start_handle
        self.properties = Property(properties)
        self.value_handle = value_handle
        self._att = att
        self._value = None
        self._value_updated = False
        self._updated_value_read = True
        self._descriptors: list[RemoteDescriptor] = []
        self._updated_handler: Optional[CharacteristicEventHandler] = None

    @property
    def descriptors(self) -> tuple[RemoteDescriptor, ...]:
        return tuple(self._descriptors)

    def __getitem__(self, offset: int) -> int:
        return _ValueHolder.__getitem__(self, offset)

    def write_value(self, value: Union[bytes, str], with_response: bool = True) -> bool:
        """Write the value, by request or command as the properties allow."""
        if isinstance(value, str):
            value = value.encode()
        if not self._att.connected(self.connection_handle):
            return False
        data = _capped(self._att, self.connection_handle, value)

        if self.properties & Property.WRITE and with_response:
            response = self._att.write_req(self.connection_handle, self.value_handle, data)
            if not _response_ok(response):
                return False
        elif self.properties & Property.WRITE_WITHOUT_RESPONSE:
            self._att.write_cmd(self.connection_handle, self.value_handle, data)
        else:
            return False

        self._value = data
        return True

    def value_updated(self) -> bool:
        """Whether a new value arrived since the last call; clears the flag."""
        self._att.connected(self.connection_handle)
        result = self._value_updated
        self._value_updated = False
        return result

    def updated_value_read(self) -> bool:
        """Whether the latest received value was already read; marks it read."""
        result = self._updated_value_read
        self._updated_value_read = True
        return result

    def read(self) -> bool:
        """Read the value from the peer; True on success."""
        if not self._att.connected(self.connection_handle):
            return False
        value = _read_value(self._att, self.connection_handle, self.value_handle)
        if value is None:
            self._clear_value()
            return False
        self._value = value
        return True

    def write_cccd(self, value: int) -> bool:
        """Write the client characteristic configuration descriptor."""
        data = struct.pack("<H", value & 0xFFFF)
        for descriptor in self._descriptors:
            if descriptor.uuid == CCCD_UUID:
                return descriptor.write_value(data)

        if self.properties & (Property.NOTIFY | Property.INDICATE):
            # No CCCD discovered: assume it follows the value handle.
            cccd = RemoteDescriptor(b"", self.connection_handle, self.value_handle + 1, self._att)
            return cccd.write_value(data)

        return False

    def add_descriptor(self, descriptor: RemoteDescriptor) -> None:
        descriptor.retain()
        self._descriptors.append(descriptor)

    def set_event_handler(self, event: CharacteristicEvent, handler: Optional[CharacteristicEventHandler]) -> None:
        if event is CharacteristicEvent.UPDATED:
            self._updated_handler = handler

    def receive_value(self, device: PeerAddress, value: bytes) -> None:
        """Store a value pushed by the peer and report it to the handler."""
        self._value = bytes(value)
        self._value_updated = True
        self._updated_value_read = False
        if self._updated_handler is not None:
            self._updated_handler(device, self)

    def _dispose(self) -> None:
        for descriptor in self._descriptors:
            if descriptor.release() <= 0:
                descriptor._dispose()
        self._descriptors.clear()
        self._value = None


class RemoteService(RemoteAttribute):
    """A primary service on a peer covering a range of handles."""

    def __init__(self, uuid_bytes: bytes, start_handle: int, end_handle: int) -> None:
        super().__init__(uuid_bytes)
        self.start_handle = start_handle
        self.end_handle = end_handle
        self._characteristics: list[RemoteCharacteristic] = []

    @property
    def characteristics(self) -> tuple[RemoteCharacteristic, ...]:
        return tuple(self._characteristics)

    def add_characteristic(self, characteristic: RemoteCharacteristic) -> None:
        characteristic.retain()
        self._characteristics.append(characteristic)

    def _dispose(self) -> None:
        for characteristic in self._characteristics:
            if characteristic.release() <= 0:
                characteristic._dispose()
        self._characteristics.clear()


class RemoteDevice:
    """The services discovered on one connected peer."""

    def __init__(self) -> None:
        self._services: list[RemoteService] = []

    @property
    def services(self) -> tuple[RemoteService, ...]:
        return tuple(self._services)

    def add_service(self, service: RemoteService) -> None:
        service.retain()
        self._services.append(service)

    def clear_services(self) -> None:
        for service in self._services:
            if service.release() <= 0:
                service._dispose()
        self._services.clear()