import pytest

from bleatt.uuid import Uuid, uuid_to_string

LONG = "19b10000-e8f2-537e-4f6c-d104768a1214"


def test_short_uuid_bytes_are_little_endian():
    assert Uuid("2902").data == bytes([0x02, 0x29])


@pytest.mark.parametrize("text", ["2902", "180f", "2a19", LONG])
def test_round_trip(text):
    assert uuid_to_string(Uuid(text).data) == text


def test_upper_case_renders_lower_case():
    assert uuid_to_string(Uuid(LONG.upper()).data) == LONG


def test_lengths():
    assert Uuid("180f").length == 2
    assert Uuid(LONG).length == 16
    assert len(Uuid(LONG).data) == Uuid(LONG).length


def test_dashes_are_ignored():
    assert Uuid(LONG).data == Uuid(LONG.replace("-", "")).data


def test_short_input_padded_to_two_bytes():
    uuid = Uuid("1")
    assert uuid.length == 2
    assert uuid.data[1] == 0


def test_empty_input():
    uuid = Uuid("")
    assert uuid.length == 2
    assert uuid.data == bytes(2)


def test_three_bytes_become_full_length():
    uuid = Uuid("123456")
    assert uuid.length == 16
    assert set(uuid.data[3:]) == {0}
    assert uuid_to_string(uuid.data).replace("-", "").endswith("123456")


def test_extra_leading_digits_dropped():
    assert Uuid("ff" + LONG.replace("-", "")).data == Uuid(LONG).data


def test_dash_layout_of_long_uuid():
    text = uuid_to_string(bytes(range(16)))
    assert [i for i, c in enumerate(text) if c == "-"] == [8, 13, 18, 23]
    assert len(text) == len(LONG)


def test_str_and_equality():
    assert str(Uuid("2a19")) == "2a19"
    assert Uuid("2A19") == Uuid("2a19")
    assert hash(Uuid("2A19")) == hash(Uuid("2a19"))