"""Encoding and decoding of ATT protocol data units."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

MAX_WRITE_DATA = 255


class Opcode(IntEnum):
    ERROR = 0x01
    MTU_REQ = 0x02
    MTU_RESP = 0x03
    FIND_INFO_REQ = 0x04
    FIND_INFO_RESP = 0x05
    FIND_BY_TYPE_REQ = 0x06
    FIND_BY_TYPE_RESP = 0x07
    READ_BY_TYPE_REQ = 0x08
    READ_BY_TYPE_RESP = 0x09
    READ_REQ = 0x0A
    READ_RESP = 0x0B
    READ_BLOB_REQ = 0x0C
    READ_BLOB_RESP = 0x0D
    READ_MULTI_REQ = 0x0E
    READ_MULTI_RESP = 0x0F
    READ_BY_GROUP_REQ = 0x10
    READ_BY_GROUP_RESP = 0x11
    WRITE_REQ = 0x12
    WRITE_RESP = 0x13
    WRITE_CMD = 0x52
    PREP_WRITE_REQ = 0x16
    PREP_WRITE_RESP = 0x17
    EXEC_WRITE_REQ = 0x18
    EXEC_WRITE_RESP = 0x19
    HANDLE_NOTIFY = 0x1B
    HANDLE_IND = 0x1D
    HANDLE_CNF = 0x1E
    SIGNED_WRITE_CMD = 0xD2


class ErrorCode(IntEnum):
    INVALID_HANDLE = 0x01
    READ_NOT_PERM = 0x02
    WRITE_NOT_PERM = 0x03
    INVALID_PDU = 0x04
    AUTHENTICATION = 0x05
    REQ_NOT_SUPP = 0x06
    INVALID_OFFSET = 0x07
    AUTHORIZATION = 0x08
    PREP_QUEUE_FULL = 0x09
    ATTR_NOT_FOUND = 0x0A
    ATTR_NOT_LONG = 0x0B
    INSUFF_ENCR_KEY_SIZE = 0x0C
    INVAL_ATTR_VALUE_LEN = 0x0D
    UNLIKELY = 0x0E
    INSUFF_ENC = 0x0F
    UNSUPP_GRP_TYPE = 0x10
    INSUFF_RESOURCES = 0x11


@dataclass(frozen=True)
class RawService:
    start_handle: int
    end_handle: int
    uuid: bytes


@dataclass(frozen=True)
class RawCharacteristic:
    start_handle: int
    properties: int
    value_handle: int
    uuid: bytes


@dataclass(frozen=True)
class RawDescriptor:
    handle: int
    uuid: bytes


def _pack(fmt: str, *values: int) -> bytes:
    try:
        return struct.pack(fmt, *values)
    except struct.error as exc:
        raise ValueError(str(exc)) from exc


def encode_mtu_req(mtu: int) -> bytes:
    return _pack("<BH", Opcode.MTU_REQ, mtu)


def encode_find_info_req(start_handle: int, end_handle: int) -> bytes:
    return _pack("<BHH", Opcode.FIND_INFO_REQ, start_handle, end_handle)


def encode_read_by_group_req(start_handle: int, end_handle: int, uuid: int) -> bytes:
    return _pack("<BHHH", Opcode.READ_BY_GROUP_REQ, start_handle, end_handle, uuid)


def encode_read_by_type_req(start_handle: int, end_handle: int, attribute_type: int) -> bytes:
    return _pack("<BHHH", Opcode.READ_BY_TYPE_REQ, start_handle, end_handle, attribute_type)


def encode_read_req(handle: int) -> bytes:
    return _pack("<BH", Opcode.READ_REQ, handle)


def _encode_write(opcode: Opcode, handle: int, data: bytes) -> bytes:
    if len(data) > MAX_WRITE_DATA:
        raise ValueError(f"write data longer than {MAX_WRITE_DATA} bytes")
    return _pack("<BH", opcode, handle) + bytes(data)


def encode_write_req(handle: int, data: bytes) -> bytes:
    return _encode_write(Opcode.WRITE_REQ, handle, data)


def encode_write_cmd(handle: int, data: bytes) -> bytes:
    return _encode_write(Opcode.WRITE_CMD, handle, data)


def encode_error(opcode: int, handle: int, code: int) -> bytes:
    return _pack("<BBHB", Opcode.ERROR, opcode, handle, code)


def _encode_handle_value(opcode: Opcode, handle: int, value: bytes, mtu: int) -> bytes:
    header = _pack("<BH", opcode, handle)
    room = max(mtu - len(header), 0)
    return header + bytes(value[:room])


def encode_notification(handle: int, value: bytes, mtu: int) -> bytes:
    """A notification PDU, with the value cut to fit the MTU."""
    return _encode_handle_value(Opcode.HANDLE_NOTIFY, handle, value, mtu)


def encode_indication(handle: int, value: bytes, mtu: int) -> bytes:
    """An indication PDU, with the value cut to fit the MTU."""
    return _encode_handle_value(Opcode.HANDLE_IND, handle, value, mtu)


def _entries(response: bytes, opcode: Opcode, step: int):
    """Yield the offset of each fixed-size entry in a list response."""
    if step <= 0:
        raise ValueError("response entry length is zero")
    for offset in range(2, len(response), step):
        if offset + step > len(response):
            raise ValueError(f"truncated {opcode.name} entry at offset {offset}")
        yield offset


def _check_header(response: bytes, opcode: Opcode) -> None:
    if len(response) < 2:
        raise ValueError("response too short")
    if response[0] != opcode:
        raise ValueError(f"expected {opcode.name}, got opcode 0x{response[0]:02x}")


def parse_services(response: bytes) -> list[RawService]:
    """Decode a Read By Group Type response into service entries."""
    _check_header(response, Opcode.READ_BY_GROUP_RESP)
    step = response[1]
    uuid_len = step - 4
    services = []
    for offset in _entries(response, Opcode.READ_BY_GROUP_RESP, step):
        start, end = struct.unpack_from("<HH", response, offset)
        uuid = bytes(response[offset + 4:offset + 4 + uuid_len])
        services.append(RawService(start, end, uuid))
    return services


def parse_characteristics(response: bytes) -> list[RawCharacteristic]:
    """Decode a Read By Type response into characteristic declarations."""
    _check_header(response, Opcode.READ_BY_TYPE_RESP)
    step = response[1]
    uuid_len = step - 5
    characteristics = []
    for offset in _entries(response, Opcode.READ_BY_TYPE_RESP, step):
        start, properties, value_handle = struct.unpack_from("<HBH", response, offset)
        uuid = bytes(response[offset + 5:offset + 5 + uuid_len])
        characteristics.append(RawCharacteristic(start, properties, value_handle, uuid))
    return characteristics


def parse_descriptors(response: bytes) -> list[RawDescriptor]:
    """Decode a Find Information response into descriptors with 16-bit UUIDs."""
    _check_header(response, Opcode.FIND_INFO_RESP)
    step = response[1] * 4
    descriptors = []
    for offset in _entries(response, Opcode.FIND_INFO_RESP, step):
        (handle,) = struct.unpack_from("<H", response, offset)
        descriptors.append(RawDescriptor(handle, bytes(response[offset + 2:offset + 4])))
    return descriptors