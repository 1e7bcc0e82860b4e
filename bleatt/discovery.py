"""Discovery of a peer's services, characteristics and descriptors over ATT."""

from __future__ import annotations

from typing import Optional, Protocol

from .pdu import (
    Opcode,
    encode_find_info_req,
    encode_read_by_group_req,
    encode_read_by_type_req,
    parse_characteristics,
    parse_descriptors,
    parse_services,
)
from .remote import RemoteCharacteristic, RemoteDescriptor, RemoteDevice, RemoteService
from .uuid import Uuid

PRIMARY_SERVICE_TYPE = 0x2800
CHARACTERISTIC_TYPE = 0x2803

_HANDLE_MASK = 0xFFFF
_LAST_HANDLE = 0xFFFF


class _DiscoveryClient(Protocol):
    """An ATT client that can send a request and wait for its response.

    ``_send_req`` returns the whole response PDU, or empty bytes when no
    response arrived. The client is also handed to the discovered
    attributes, which use it for their own reads and writes.
    """

    def _send_req(self, connection_handle: int, request: bytes) -> bytes: ...

    def connected(self, handle: int) -> bool: ...

    def mtu(self, handle: int) -> int: ...

    def read_req(self, connection_handle: int, handle: int) -> bytes: ...

    def write_req(self, connection_handle: int, handle: int, data: bytes) -> bytes: ...

    def write_cmd(self, connection_handle: int, handle: int, data: bytes) -> None: ...


def discover_services(
    att: _DiscoveryClient,
    connection_handle: int,
    device: RemoteDevice,
    service_uuid_filter: Optional[str] = None,
) -> bool:
    """Find the peer's primary services and add them to ``device``.

    With a filter only services whose UUID matches it are added.
    Returns False when a request goes unanswered.
    """
    wanted = Uuid(service_uuid_filter) if service_uuid_filter is not None else None
    start_handle = 0x0001
    end_handle = _LAST_HANDLE

    while end_handle == _LAST_HANDLE:
        request = encode_read_by_group_req(start_handle, end_handle, PRIMARY_SERVICE_TYPE)
        response = att._send_req(connection_handle, request)
        if not response:
            return False

        if response[0] != Opcode.READ_BY_GROUP_RESP:
            break

        for raw in parse_services(response):
            if wanted is None or raw.uuid == wanted.data:
                device.add_service(RemoteService(raw.uuid, raw.start_handle, raw.end_handle))

            start_handle = (raw.end_handle + 1) & _HANDLE_MASK
            if start_handle == 0x0000:
                end_handle = 0x0000

    return True


def discover_characteristics(
    att: _DiscoveryClient,
    connection_handle: int,
    device: RemoteDevice,
) -> bool:
    """Find the characteristics of every service of ``device``.

    Returns False when a request goes unanswered.
    """
    for service in device.services:
        start_handle = service.start_handle
        end_handle = service.end_handle

        while True:
            request = encode_read_by_type_req(start_handle, end_handle, CHARACTERISTIC_TYPE)
            response = att._send_req(connection_handle, request)
            if not response:
                return False

            if response[0] != Opcode.READ_BY_TYPE_RESP:
                break

            for raw in parse_characteristics(response):
                service.add_characteristic(
                    RemoteCharacteristic(
                        raw.uuid,
                        connection_handle,
                        raw.start_handle,
                        raw.properties,
                        raw.value_handle,
                        att,
                    )
                )
                start_handle = (raw.value_handle + 1) & _HANDLE_MASK

    return True


def discover_descriptors(
    att: _DiscoveryClient,
    connection_handle: int,
    device: RemoteDevice,
) -> bool:
    """Find the descriptors that follow each characteristic's value handle.

    Returns False when a request goes unanswered.
    """
    for service in device.services:
        characteristics = service.characteristics
        followers = characteristics[1:] + (None,)

        for characteristic, following in zip(characteristics, followers):
            start_handle = (characteristic.value_handle + 1) & _HANDLE_MASK
            end_handle = following.value_handle if following is not None else service.end_handle

            if start_handle > end_handle:
                continue

            while True:
                request = encode_find_info_req(start_handle, end_handle)
                response = att._send_req(connection_handle, request)
                if not response:
                    return False

                if response[0] != Opcode.FIND_INFO_RESP:
                    break

                for raw in parse_descriptors(response):
                    characteristic.add_descriptor(
                        RemoteDescriptor(raw.uuid, connection_handle, raw.handle, att)
                    )
                    start_handle = (raw.handle + 1) & _HANDLE_MASK

    return True