# bleatt

`bleatt` is the Bluetooth Low Energy Attribute Protocol (ATT) layer of a
host stack. It keeps the table of connected peers and their MTUs, sends
client requests and waits for the matching responses, sends notifications
and indications, routes incoming notifications and indications to the
discovered remote characteristics, and discovers a peer's services,
characteristics and descriptors.

It does not talk to a radio. You supply an object that satisfies the
`bleatt.att.HciTransport` protocol (`poll`, `send_acl_pkt`,
`le_create_conn`, `le_cancel_conn`, `disconnect`), and `bleatt` drives it.

## Installation

```
pip install bleatt
```

To run the test suite:

```
pip install "bleatt[test]"
pytest
```

## Modules

- `bleatt.properties`: `Property`, an `IntFlag` of characteristic
  properties (`BROADCAST`, `READ`, `WRITE_WITHOUT_RESPONSE`, `WRITE`,
  `NOTIFY`, `INDICATE`).
- `bleatt.uuid`: `Uuid`, which parses UUID text into its 2- or 16-byte
  little-endian form (`Uuid.data`, `Uuid.length`), and `uuid_to_string`,
  which formats little-endian UUID bytes as lower-case text with dashes.
- `bleatt.pdu`: `Opcode` and `ErrorCode`; encoders `encode_mtu_req`,
  `encode_find_info_req`, `encode_read_by_group_req`,
  `encode_read_by_type_req`, `encode_read_req`, `encode_write_req`,
  `encode_write_cmd`, `encode_error`, `encode_notification` and
  `encode_indication`; and parsers `parse_services`,
  `parse_characteristics` and `parse_descriptors`, which return
  `RawService`, `RawCharacteristic` and `RawDescriptor` entries and raise
  `ValueError` on a malformed response.
- `bleatt.remote`: the discovered tree of a peer: `RemoteDevice`,
  `RemoteService`, `RemoteCharacteristic` and `RemoteDescriptor`, plus
  `PeerAddress` and `CharacteristicEvent`. Characteristics and descriptors
  can be read and written; `RemoteCharacteristic.write_cccd` writes the
  client characteristic configuration descriptor, and
  `RemoteCharacteristic.set_event_handler(CharacteristicEvent.UPDATED, ...)`
  installs a callback for values pushed by the peer.
- `bleatt.discovery`: `discover_services`, `discover_characteristics` and
  `discover_descriptors`.
- `bleatt.att`: `Att`, the protocol engine, with `DeviceEvent` and the
  `HciTransport` protocol.

## Example

```python
from bleatt.att import Att, DeviceEvent

att = Att(hci)  # hci implements bleatt.att.HciTransport

att.set_event_handler(DeviceEvent.CONNECTED, lambda peer: print("connected", peer))

address = bytes(6)  # address of the peer
if att.connect(0x00, address) and att.discover_attributes(0x00, address, None):
    device = att.device(0x00, address)
    for service in device.services:
        print(service.uuid)
        for characteristic in service.characteristics:
            if characteristic.read():
                print(" ", characteristic.uuid, characteristic.value.hex())
```

Feed the transport's events into `Att`:

- incoming ATT PDUs go to `Att.handle_data(connection_handle, data)`;
- new connections go to `Att.add_connection(handle, role, address_type, address)`;
- closed connections go to `Att.remove_connection(handle, reason)`.

`Att.connect`, `Att.disconnect` and request/response calls wait up to
`Att.timeout` seconds (5 by default), polling the transport meanwhile.

## What it does not do

- It holds no local attribute database. Requests that a peer sends to the
  local server are checked for well-formedness and then answered as a
  server with no attributes would answer them (mostly with an
  "attribute not found" error).
- It does no scanning or advertising; `DeviceEvent.DISCOVERED` exists but
  `Att.set_event_handler` only accepts `CONNECTED` and `DISCONNECTED`.
- It contains no HCI transport of its own.