"""Attribute protocol (ATT) layer running over an HCI transport.

The layer keeps track of connected peers and their MTUs, sends client
requests and waits for the matching responses, routes notifications and
indications to the discovered remote characteristics, and drives the
discovery of a peer's services.

No local attribute database is held here. Requests that address the local
server are checked for well-formedness and then answered as a server with
no attributes would answer them.
"""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Optional, Protocol

from .discovery import discover_characteristics, discover_descriptors, discover_services
from .pdu import (
    ErrorCode,
    Opcode,
    encode_error,
    encode_indication,
    encode_mtu_req,
    encode_notification,
    encode_read_req,
    encode_write_cmd,
    encode_write_req,
)
from .remote import PeerAddress, RemoteDevice

ATT_CID = 0x0004
DEFAULT_MTU = 23
DEFAULT_MAX_PEERS = 8
DEFAULT_TIMEOUT = 5.0
FREE_HANDLE = 0xFFFF

PRIMARY_SERVICE_TYPE = 0x2800
SECONDARY_SERVICE_TYPE = 0x2801

_PEER_IS_CENTRAL = 0x01
_HEADER_SIZE = 3
_LOCAL_ATTRIBUTE_COUNT = 0


class HciTransport(Protocol):
    """The HCI operations the ATT layer needs.

    Status-returning calls give 0 on success, as the controller reports it.
    """

    def poll(self) -> None: ...

    def send_acl_pkt(self, handle: int, cid: int, data: bytes) -> None: ...

    def le_create_conn(
        self,
        interval: int,
        window: int,
        initiator_filter: int,
        peer_address_type: int,
        peer_address: bytes,
        own_address_type: int,
        min_interval: int,
        max_interval: int,
        latency: int,
        supervision_timeout: int,
        min_ce_length: int,
        max_ce_length: int,
    ) -> int: ...

    def le_cancel_conn(self) -> int: ...

    def disconnect(self, handle: int) -> int: ...


class DeviceEvent(IntEnum):
    CONNECTED = 0
    DISCONNECTED = 1
    DISCOVERED = 2


DeviceEventHandler = Callable[[PeerAddress], None]

_ATT_EVENTS = frozenset({DeviceEvent.CONNECTED, DeviceEvent.DISCONNECTED})


@dataclass
class _Peer:
    connection_handle: int = FREE_HANDLE
    role: int = 0
    address_type: int = 0
    address: bytes = bytes(6)
    mtu: int = DEFAULT_MTU
    device: Optional[RemoteDevice] = None

    @property
    def in_use(self) -> bool:
        return self.connection_handle != FREE_HANDLE

    @property
    def peer_address(self) -> PeerAddress:
        return PeerAddress(self.address_type, self.address)

    def matches(self, address_type: int, address: bytes) -> bool:
        return self.in_use and self.address_type == address_type and self.address == address

    def reset(self) -> None:
        self.connection_handle = FREE_HANDLE
        self.role = 0
        self.address_type = 0
        self.address = bytes(6)
        self.mtu = DEFAULT_MTU
        if self.device is not None:
            self.device.clear_services()
        self.device = None


@dataclass
class _PendingResponse:
    connection_handle: int = FREE_HANDLE
    op: int = 0
    response: bytes = field(default=b"")


def _u16(data: bytes, offset: int = 0) -> int:
    if len(data) < offset + 2:
        return 0
    return struct.unpack_from("<H", data, offset)[0]


class Att:
    """ATT bearer shared by all connections of one controller."""

    def __init__(
        self,
        hci: HciTransport,
        max_peers: int = DEFAULT_MAX_PEERS,
        max_mtu: int = DEFAULT_MTU,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.hci = hci
        self.max_mtu = max_mtu
        self.timeout = timeout
        self._peers = [_Peer() for _ in range(max_peers)]
        self._pending = _PendingResponse()
        self._cnf = False
        self._handlers: dict[DeviceEvent, Optional[DeviceEventHandler]] = {}
        self._dispatch = {
            Opcode.ERROR: self._on_error,
            Opcode.MTU_REQ: self._on_mtu_req,
            Opcode.MTU_RESP: self._on_mtu_resp,
            Opcode.FIND_INFO_REQ: self._on_find_info_req,
            Opcode.FIND_INFO_RESP: self._on_list_resp,
            Opcode.FIND_BY_TYPE_REQ: self._on_find_by_type_req,
            Opcode.READ_BY_TYPE_REQ: self._on_read_by_type_req,
            Opcode.READ_BY_TYPE_RESP: self._on_read_by_type_resp,
            Opcode.READ_BY_GROUP_REQ: self._on_read_by_group_req,
            Opcode.READ_BY_GROUP_RESP: self._on_list_resp,
            Opcode.READ_REQ: self._on_read_or_blob_req,
            Opcode.READ_BLOB_REQ: self._on_read_or_blob_req,
            Opcode.READ_RESP: self._on_read_resp,
            Opcode.WRITE_REQ: self._on_write_req_or_cmd,
            Opcode.WRITE_CMD: self._on_write_req_or_cmd,
            Opcode.WRITE_RESP: self._on_write_resp,
            Opcode.PREP_WRITE_REQ: self._on_prep_write_req,
            Opcode.EXEC_WRITE_REQ: self._on_exec_write_req,
            Opcode.HANDLE_NOTIFY: self._on_notify_or_ind,
            Opcode.HANDLE_IND: self._on_notify_or_ind,
            Opcode.HANDLE_CNF: self._on_cnf,
        }

    # -- peers -------------------------------------------------------------

    def _in_use(self):
        return (peer for peer in self._peers if peer.in_use)

    def _peer(self, connection_handle: int) -> Optional[_Peer]:
        return next((p for p in self._in_use() if p.connection_handle == connection_handle), None)

    def _peer_by_address(self, address_type: int, address: bytes) -> Optional[_Peer]:
        address = bytes(address)
        return next((p for p in self._peers if p.matches(address_type, address)), None)

    def _deadline_loop(self):
        """Yield until the timeout has passed."""
        start = time.monotonic()
        while time.monotonic() - start < self.timeout:
            yield

    def _emit(self, event: DeviceEvent, peer: PeerAddress) -> None:
        handler = self._handlers.get(event)
        if handler is not None:
            handler(peer)

    def set_event_handler(self, event: DeviceEvent, handler: Optional[DeviceEventHandler]) -> None:
        """Install the handler for connection or disconnection; other events are ignored."""
        if event in _ATT_EVENTS:
            self._handlers[event] = handler

    def add_connection(self, handle: int, role: int, address_type: int, address: bytes) -> None:
        """Record a new connection in the first free slot; dropped when none is free."""
        peer_address = PeerAddress(address_type, bytes(address))
        peer = next((p for p in self._peers if not p.in_use), None)
        if peer is None:
            return
        peer.connection_handle = handle
        peer.role = role
        peer.mtu = DEFAULT_MTU
        peer.address_type = peer_address.address_type
        peer.address = peer_address.address
        self._emit(DeviceEvent.CONNECTED, peer_address)

    def remove_connection(self, handle: int, reason: int = 0) -> None:
        """Forget a closed connection and report the disconnection."""
        peer = self._peer(handle)
        if peer is None:
            return
        self._emit(DeviceEvent.DISCONNECTED, peer.peer_address)
        peer.reset()

    def connection_handle(self, address_type: int, address: bytes) -> Optional[int]:
        peer = self._peer_by_address(address_type, address)
        return peer.connection_handle if peer is not None else None

    def device(self, address_type: int, address: bytes) -> Optional[RemoteDevice]:
        peer = self._peer_by_address(address_type, address)
        return peer.device if peer is not None else None

    def any_connected(self) -> bool:
        return any(True for _ in self._in_use())

    def connected_to(self, address_type: int, address: bytes) -> bool:
        return self._peer_by_address(address_type, address) is not None

    def connected(self, handle: int) -> bool:
        """Poll the transport, then tell whether the connection handle is live."""
        self.hci.poll()
        return self._peer(handle) is not None

    def mtu(self, handle: int) -> int:
        peer = self._peer(handle)
        return peer.mtu if peer is not None else DEFAULT_MTU

    def central(self) -> Optional[PeerAddress]:
        """The first connected peer acting as central, if any."""
        peer = next((p for p in self._in_use() if p.role == _PEER_IS_CENTRAL), None)
        return peer.peer_address if peer is not None else None

    # -- connection control --------------------------------------------------

    def connect(self, address_type: int, address: bytes) -> bool:
        """Create a connection and wait for it; cancel it on timeout."""
        address = bytes(address)
        status = self.hci.le_create_conn(
            0x0060, 0x0030, 0x00, address_type, address, 0x00,
            0x0006, 0x000C, 0x0000, 0x00C8, 0x0004, 0x0006,
        )
        if status != 0:
            return False

        is_connected = False
        for _ in self._deadline_loop():
            self.hci.poll()
            is_connected = self.connected_to(address_type, address)
            if is_connected:
                break

        if not is_connected:
            self.hci.le_cancel_conn()
        return is_connected

    def disconnect(self, address_type: int, address: bytes) -> bool:
        """Disconnect one peer and wait until the link is gone."""
        handle = self.connection_handle(address_type, address)
        if handle is None:
            return False
        self.hci.disconnect(handle)
        for _ in self._deadline_loop():
            self.hci.poll()
            if not self.connected(handle):
                return True
        return False

    def disconnect_all(self) -> bool:
        """Disconnect every peer; True when at least one disconnect was accepted."""
        count = 0
        for peer in self._in_use():
            if self.hci.disconnect(peer.connection_handle) != 0:
                continue
            count += 1
            peer.reset()
        return count > 0

    # -- discovery -----------------------------------------------------------

    def discover_attributes(
        self, address_type: int, address: bytes, service_uuid_filter: Optional[str] = None
    ) -> bool:
        """Exchange the MTU, then discover services, characteristics and descriptors."""
        peer = self._peer_by_address(address_type, address)
        if peer is None:
            return False
        handle = peer.connection_handle

        if not self._send_req(handle, encode_mtu_req(self.max_mtu)):
            return False

        peer = self._peer(handle)
        if peer is None:
            return False
        if peer.device is None:
            peer.device = RemoteDevice()
        device = peer.device

        if service_uuid_filter is None:
            device.clear_services()
        else:
            wanted = service_uuid_filter.casefold()
            if any(service.uuid.casefold() == wanted for service in device.services):
                return True

        return (
            discover_services(self, handle, device, service_uuid_filter)
            and discover_characteristics(self, handle, device)
            and discover_descriptors(self, handle, device)
        )

    # -- client requests -----------------------------------------------------

    def _send(self, connection_handle: int, data: bytes) -> None:
        self.hci.send_acl_pkt(connection_handle, ATT_CID, bytes(data))

    def _send_req(self, connection_handle: int, request: bytes) -> bytes:
        """Send a request and wait for its response; empty bytes when none came."""
        self._pending = _PendingResponse(connection_handle, request[0] + 1, b"")
        self._send(connection_handle, request)
        try:
            for _ in self._deadline_loop():
                self.hci.poll()
                if not self.connected(connection_handle):
                    break
                if self._pending.response:
                    return self._pending.response
            return b""
        finally:
            self._pending.connection_handle = FREE_HANDLE

    def read_req(self, connection_handle: int, handle: int) -> bytes:
        return self._send_req(connection_handle, encode_read_req(handle))

    def write_req(self, connection_handle: int, handle: int, data: bytes) -> bytes:
        return self._send_req(connection_handle, encode_write_req(handle, data))

    def write_cmd(self, connection_handle: int, handle: int, data: bytes) -> None:
        self._send(connection_handle, encode_write_cmd(handle, data))

    # -- server pushes -------------------------------------------------------

    def handle_notify(self, handle: int, value: bytes) -> bool:
        """Notify every connected peer; True when at least one was sent."""
        count = 0
        for peer in self._in_use():
            value = bytes(value[:max(peer.mtu - _HEADER_SIZE, 0)])
            self._send(peer.connection_handle, encode_notification(handle, value, peer.mtu))
            count += 1
        return count > 0

    def handle_ind(self, handle: int, value: bytes) -> bool:
        """Indicate to every connected peer, waiting for each confirmation."""
        count = 0
        for peer in self._in_use():
            value = bytes(value[:max(peer.mtu - _HEADER_SIZE, 0)])
            self._cnf = False
            self._send(peer.connection_handle, encode_indication(handle, value, peer.mtu))
            while not self._cnf:
                self.hci.poll()
                if not self.connected_to(peer.address_type, peer.address):
                    break
            count += 1
        return count > 0

    # -- incoming PDUs -------------------------------------------------------

    def handle_data(self, connection_handle: int, data: bytes) -> None:
        """Handle one ATT PDU received on a connection."""
        if not data:
            return
        opcode, payload = data[0], bytes(data[1:])
        handler = self._dispatch.get(opcode)
        if handler is None:
            self._send_error(connection_handle, opcode, 0x0000, ErrorCode.REQ_NOT_SUPP)
            return
        handler(connection_handle, opcode, payload)

    def _send_error(self, connection_handle: int, opcode: int, handle: int, code: int) -> None:
        self._send(connection_handle, encode_error(opcode, handle, code))

    def _store_response(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        pending = self._pending
        if pending.connection_handle == connection_handle and pending.op == opcode:
            pending.response = bytes([opcode]) + payload

    def _on_error(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if len(payload) != 4:
            return
        pending = self._pending
        if pending.connection_handle == connection_handle and pending.op - 1 == payload[0]:
            pending.response = bytes([Opcode.ERROR]) + payload

    def _on_mtu_req(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if len(payload) != 2:
            self._send_error(connection_handle, Opcode.MTU_REQ, 0x0000, ErrorCode.INVALID_PDU)
            return
        mtu = min(_u16(payload), self.max_mtu)
        peer = self._peer(connection_handle)
        if peer is not None:
            peer.mtu = mtu
        self._send(connection_handle, struct.pack("<BH", Opcode.MTU_RESP, mtu))

    def _on_mtu_resp(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if len(payload) != 2:
            return
        peer = self._peer(connection_handle)
        if peer is not None:
            peer.mtu = _u16(payload)
        self._store_response(connection_handle, opcode, payload)

    def _on_list_resp(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if len(payload) < 2:
            return
        self._store_response(connection_handle, opcode, payload)

    def _on_read_by_type_resp(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if len(payload) < 1:
            return
        self._store_response(connection_handle, opcode, payload)

    def _on_read_resp(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        self._store_response(connection_handle, opcode, payload)

    def _on_write_resp(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if payload:
            return
        self._store_response(connection_handle, opcode, payload)

    def _on_find_info_req(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        start = _u16(payload)
        code = ErrorCode.INVALID_PDU if len(payload) != 4 else ErrorCode.ATTR_NOT_FOUND
        self._send_error(connection_handle, opcode, start, code)

    def _on_find_by_type_req(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        start = _u16(payload)
        code = ErrorCode.INVALID_PDU if len(payload) < 6 else ErrorCode.ATTR_NOT_FOUND
        self._send_error(connection_handle, opcode, start, code)

    def _on_read_by_group_req(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        start = _u16(payload)
        group_type = _u16(payload, 4)
        if len(payload) != 6 or group_type not in (PRIMARY_SERVICE_TYPE, SECONDARY_SERVICE_TYPE):
            self._send_error(connection_handle, opcode, start, ErrorCode.UNSUPP_GRP_TYPE)
            return
        self._send_error(connection_handle, opcode, start, ErrorCode.ATTR_NOT_FOUND)

    def _on_read_by_type_req(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        start = _u16(payload)
        code = ErrorCode.INVALID_PDU if len(payload) != 6 else ErrorCode.ATTR_NOT_FOUND
        self._send_error(connection_handle, opcode, start, code)

    def _on_read_or_blob_req(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        expected = 2 if opcode == Opcode.READ_REQ else 4
        if len(payload) != expected:
            self._send_error(connection_handle, opcode, 0x0000, ErrorCode.INVALID_PDU)
            return
        handle = _u16(payload)
        if (handle - 1) & 0xFFFF >= _LOCAL_ATTRIBUTE_COUNT:
            self._send_error(connection_handle, opcode, handle, ErrorCode.ATTR_NOT_FOUND)

    def _on_write_req_or_cmd(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if opcode != Opcode.WRITE_REQ:
            return
        if len(payload) < 2:
            self._send_error(connection_handle, Opcode.WRITE_REQ, 0x0000, ErrorCode.INVALID_PDU)
            return
        handle = _u16(payload)
        if (handle - 1) & 0xFFFF >= _LOCAL_ATTRIBUTE_COUNT:
            self._send_error(connection_handle, Opcode.WRITE_REQ, handle, ErrorCode.ATTR_NOT_FOUND)

    def _on_prep_write_req(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if len(payload) < 4:
            self._send_error(connection_handle, opcode, 0x0000, ErrorCode.INVALID_PDU)
            return
        handle = _u16(payload)
        if (handle - 1) & 0xFFFF >= _LOCAL_ATTRIBUTE_COUNT:
            self._send_error(connection_handle, opcode, handle, ErrorCode.ATTR_NOT_FOUND)

    def _on_exec_write_req(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if len(payload) != 1:
            self._send_error(connection_handle, opcode, 0x0000, ErrorCode.INVALID_PDU)
            return
        self._send(connection_handle, bytes([Opcode.EXEC_WRITE_RESP]))

    def _on_notify_or_ind(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        if len(payload) < 2:
            return
        handle = _u16(payload)
        value = payload[2:]

        for peer in self._in_use():
            if peer.connection_handle != connection_handle:
                continue
            if peer.device is None:
                break
            for service in peer.device.services:
                if service.start_handle < handle <= service.end_handle:
                    for characteristic in service.characteristics:
                        if characteristic.value_handle == handle:
                            characteristic.receive_value(peer.peer_address, value)
                    break

        if opcode == Opcode.HANDLE_IND:
            self._send(connection_handle, bytes([Opcode.HANDLE_CNF]))

    def _on_cnf(self, connection_handle: int, opcode: int, payload: bytes) -> None:
        self._cnf = True