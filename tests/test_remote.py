import pytest

from bleatt.pdu import Opcode
from bleatt.properties import Property
from bleatt.remote import (
    CharacteristicEvent,
    PeerAddress,
    RemoteAttribute,
    RemoteCharacteristic,
    RemoteDescriptor,
    RemoteDevice,
    RemoteService,
)

CCCD = b"\x02\x29"
CONN = 0x40


class FakeAtt:
    def __init__(self, connected=True, mtu=23):
        self.is_connected = connected
        self.mtu_value = mtu
        self.write_response = bytes([Opcode.WRITE_RESP])
        self.read_response = b""
        self.writes = []
        self.cmds = []
        self.reads = []
        self.polls = 0

    def connected(self, handle):
        self.polls += 1
        return self.is_connected

    def mtu(self, handle):
        return self.mtu_value

    def read_req(self, connection_handle, handle):
        self.reads.append((connection_handle, handle))
        return self.read_response

    def write_req(self, connection_handle, handle, data):
        self.writes.append((connection_handle, handle, bytes(data)))
        return self.write_response

    def write_cmd(self, connection_handle, handle, data):
        self.cmds.append((connection_handle, handle, bytes(data)))


def make_char(att, properties, value_handle=0x11):
    return RemoteCharacteristic(b"\x19\x2a", CONN, value_handle - 1, properties, value_handle, att)


def test_attribute_uuid_text_and_refcount():
    attr = RemoteAttribute(CCCD)
    assert attr.uuid == "2902"
    assert attr.retain() == 1
    assert attr.retain() == 2
    assert attr.release() == 1
    assert attr.ref_count == 1


def test_peer_address_requires_six_bytes():
    with pytest.raises(ValueError):
        PeerAddress(0, b"\x01\x02")
    assert PeerAddress(1, bytearray(6)).address == bytes(6)


def test_descriptor_index_before_value_is_zero():
    desc = RemoteDescriptor(CCCD, CONN, 0x12, FakeAtt())
    assert desc[0] == 0
    assert desc.value == b""


def test_descriptor_write_success():
    att = FakeAtt()
    desc = RemoteDescriptor(CCCD, CONN, 0x12, att)
    assert desc.write_value(b"\x01\x00") is True
    assert att.writes == [(CONN, 0x12, b"\x01\x00")]
    assert desc.value == b"\x01\x00"
    assert desc[0] == 1


@pytest.mark.parametrize("response", [b"", bytes([Opcode.ERROR, Opcode.WRITE_REQ, 0x12, 0, 3])])
def test_descriptor_write_failure_keeps_value(response):
    att = FakeAtt()
    att.write_response = response
    desc = RemoteDescriptor(CCCD, CONN, 0x12, att)
    assert desc.write_value(b"\x01\x00") is False
    assert desc.value == b""


def test_descriptor_write_not_connected():
    att = FakeAtt(connected=False)
    desc = RemoteDescriptor(CCCD, CONN, 0x12, att)
    assert desc.write_value(b"x") is False
    assert att.writes == []


def test_write_capped_to_mtu():
    att = FakeAtt(mtu=23)
    desc = RemoteDescriptor(CCCD, CONN, 0x12, att)
    data = bytes(range(30))
    assert desc.write_value(data)
    assert att.writes[0][2] == data[:20]
    assert desc.value == data[:20]


def test_descriptor_read_success_and_failure():
    att = FakeAtt()
    desc = RemoteDescriptor(CCCD, CONN, 0x12, att)
    att.read_response = bytes([Opcode.READ_RESP]) + b"abc"
    assert desc.read() is True
    assert desc.value == b"abc"
    assert att.reads == [(CONN, 0x12)]
    att.read_response = bytes([Opcode.ERROR, Opcode.READ_REQ, 0x12, 0, 2])
    assert desc.read() is False
    assert desc.value == b""


def test_characteristic_write_with_response():
    att = FakeAtt()
    char = make_char(att, Property.WRITE | Property.READ)
    assert char.write_value(b"hi") is True
    assert att.writes == [(CONN, 0x11, b"hi")]
    assert att.cmds == []
    assert char.value == b"hi"


def test_characteristic_write_without_response_uses_command():
    att = FakeAtt()
    char = make_char(att, Property.WRITE | Property.WRITE_WITHOUT_RESPONSE)
    assert char.write_value("hi", with_response=False) is True
    assert att.cmds == [(CONN, 0x11, b"hi")]
    assert att.writes == []


def test_characteristic_write_not_permitted():
    att = FakeAtt()
    char = make_char(att, Property.READ)
    assert char.write_value(b"hi") is False
    assert char.write_value(b"hi", with_response=False) is False
    assert att.writes == [] and att.cmds == []


def test_characteristic_write_error_response():
    att = FakeAtt()
    att.write_response = bytes([Opcode.ERROR, Opcode.WRITE_REQ, 0x11, 0, 3])
    char = make_char(att, Property.WRITE)
    assert char.write_value(b"hi") is False
    assert char[0] == 0


def test_characteristic_read():
    att = FakeAtt()
    char = make_char(att, Property.READ)
    att.read_response = bytes([Opcode.READ_RESP]) + b"\x07\x08"
    assert char.read() is True
    assert char.value == b"\x07\x08"
    assert len(char) == 2
    att.is_connected = False
    assert char.read() is False


def test_write_cccd_uses_discovered_descriptor():
    att = FakeAtt()
    char = make_char(att, Property.NOTIFY)
    desc = RemoteDescriptor(CCCD, CONN, 0x15, att)
    char.add_descriptor(desc)
    assert desc.ref_count == 1
    assert char.write_cccd(0x0001) is True
    assert att.writes == [(CONN, 0x15, b"\x01\x00")]


def test_write_cccd_falls_back_to_next_handle():
    att = FakeAtt()
    char = make_char(att, Property.INDICATE, value_handle=0x20)
    assert char.write_cccd(0x0002) is True
    assert att.writes == [(CONN, 0x21, b"\x02\x00")]


def test_write_cccd_without_notify_or_indicate():
    att = FakeAtt()
    char = make_char(att, Property.READ)
    assert char.write_cccd(1) is False
    assert att.writes == []


def test_receive_value_calls_handler_and_sets_flags():
    att = FakeAtt()
    char = make_char(att, Property.NOTIFY)
    seen = []
    char.set_event_handler(CharacteristicEvent.UPDATED, lambda dev, c: seen.append((dev, c.value)))
    peer = PeerAddress(0, bytes(6))
    assert char.updated_value_read() is True
    char.receive_value(peer, b"\x05")
    assert seen == [(peer, b"\x05")]
    assert char.value_updated() is True
    assert char.value_updated() is False
    assert att.polls == 2
    assert char.updated_value_read() is False
    assert char.updated_value_read() is True


def test_other_events_do_not_install_handler():
    char = make_char(FakeAtt(), Property.NOTIFY)
    seen = []
    char.set_event_handler(CharacteristicEvent.SUBSCRIBED, lambda dev, c: seen.append(c))
    char.receive_value(PeerAddress(0, bytes(6)), b"\x01")
    assert seen == []
    assert char.value == b"\x01"


def test_service_and_device_ownership():
    att = FakeAtt()
    service = RemoteService(b"\x0f\x18", 1, 5)
    char = make_char(att, Property.READ, value_handle=3)
    service.add_characteristic(char)
    assert service.characteristics == (char,)
    assert char.ref_count == 1

    device = RemoteDevice()
    device.add_service(service)
    assert device.services == (service,)
    device.clear_services()
    assert device.services == ()
    assert service.ref_count == 0
    assert service.characteristics == ()
    assert char.ref_count == 0


def test_shared_service_survives_one_clear():
    service = RemoteService(b"\x0f\x18", 1, 5)
    service.add_characteristic(make_char(FakeAtt(), Property.READ, value_handle=3))
    first, second = RemoteDevice(), RemoteDevice()
    first.add_service(service)
    second.add_service(service)
    first.clear_services()
    assert service.ref_count == 1
    assert len(service.characteristics) == 1
    assert second.services == (service,)