import pytest

from u2fhid.u2ftypes import (
    CID_BROADCAST,
    DeviceError,
    InitResponse,
    U2FDevice,
    U2FDeviceInfo,
    read_cont_packet,
    read_init_packet,
    serialize_apdu,
    to_hex,
    write_cont_packet,
    write_init_packet,
)


class FakeDevice(U2FDevice):
    def __init__(self, reads=(), short_write=False):
        self.reads = list(reads)
        self.writes = []
        self.short_write = short_write

    def read(self, size):
        frame = self.reads.pop(0)
        assert len(frame) <= size
        return frame

    def write(self, data):
        self.writes.append(bytes(data))
        return len(data) - 1 if self.short_write else len(data)

    def get_property(self, name):
        return f"{name} not implemented"


def padded(packet, size=64, fill=0):
    return bytes(packet) + bytes([fill]) * (size - len(packet))


def test_ctap1_serialize():
    assert serialize_apdu(1, 2, b"") == bytes([0, 1, 2, 0, 0, 0, 0])
    assert serialize_apdu(1, 2, bytes([42])) == bytes([0, 1, 2, 0, 0, 0, 1, 42, 0, 0])

    d = bytes([0xFF] * 300)
    expected = bytes([0, 1, 2, 0, 0, 0x1, 0x2C]) + d + bytes([0, 0])
    assert serialize_apdu(1, 2, d) == expected

    with pytest.raises(DeviceError):
        serialize_apdu(1, 2, bytes([0xFF] * 65536))


def test_to_hex():
    assert to_hex(bytes([0x01, 0xAB, 0xFF]), ":") == "01:ab:ff"
    assert to_hex(bytes([0x00, 0x10])) == "0010"


def test_device_info_str():
    info = U2FDeviceInfo(b"Acme", b"Key", 2, 4, 1, 8, 1)
    assert str(info) == (
        "Vendor: Acme, Device: Key, Interface: 2, Firmware: v4.1.8, Capabilities: 01"
    )


def test_data_sizes():
    dev = FakeDevice()
    assert U2FDevice.in_init_data_size(dev) == 57
    assert U2FDevice.in_cont_data_size(dev) == 59
    assert U2FDevice.out_init_data_size(dev) == 57
    assert U2FDevice.out_cont_data_size(dev) == 59
    assert dev.cid == CID_BROADCAST
    assert dev.get_property("a") == "a not implemented"


def test_write_init_packet_long_payload():
    dev = FakeDevice()
    dev.cid = bytes([1, 2, 3, 4])
    data = bytes(range(100))
    count = write_init_packet(dev, 0x83, data)
    assert count == 57
    (frame,) = dev.writes
    assert len(frame) == 65
    assert frame[:8] == bytes([0, 1, 2, 3, 4, 0x83, 0, 100])
    assert frame[8:] == data[:57]


def test_write_init_packet_too_large():
    dev = FakeDevice()
    with pytest.raises(DeviceError, match="payload length"):
        write_init_packet(dev, 0x83, bytes(0x10000))


def test_write_cont_packet_pads_with_zeros():
    dev = FakeDevice()
    dev.cid = bytes([1, 2, 3, 4])
    data = bytes([7] * 43)
    assert write_cont_packet(dev, 2, data) == 43
    (frame,) = dev.writes
    assert frame[:6] == bytes([0, 1, 2, 3, 4, 2])
    assert frame[6:49] == data
    assert frame[49:] == bytes(16)


def test_short_write_raises():
    dev = FakeDevice(short_write=True)
    with pytest.raises(DeviceError, match="device write failed"):
        write_cont_packet(dev, 0, b"abc")


def test_read_init_packet_skips_other_channels():
    cid = bytes([1, 2, 3, 4])
    other = padded(bytes([9, 9, 9, 9, 0x83, 0, 3, 5, 5, 5]))
    mine = padded(cid + bytes([0x83, 0, 3, 0xAA, 0xBB, 0xCC]))
    dev = FakeDevice(reads=[other, mine])
    dev.cid = cid
    data, total = read_init_packet(dev)
    assert data == bytes([0xAA, 0xBB, 0xCC])
    assert total == 3
    assert dev.reads == []


def test_read_init_packet_long_message():
    cid = bytes([1, 2, 3, 4])
    frame = padded(cid + bytes([0x81, 0, 0xE4]), fill=1)
    dev = FakeDevice(reads=[frame])
    dev.cid = cid
    data, total = read_init_packet(dev)
    assert total == 228
    assert data == bytes([1] * 57)


def test_read_init_packet_short_frame():
    cid = bytes([1, 2, 3, 4])
    dev = FakeDevice(reads=[cid + bytes([0x83, 0, 1])])
    dev.cid = cid
    with pytest.raises(DeviceError, match="invalid init packet"):
        read_init_packet(dev)


def test_read_cont_packet():
    cid = bytes([1, 2, 3, 4])
    frame = padded(cid + bytes([0]), fill=1)
    dev = FakeDevice(reads=[frame])
    dev.cid = cid
    assert read_cont_packet(dev, 0, 10) == bytes([1] * 10)


def test_read_cont_packet_caps_at_data_size():
    cid = bytes([1, 2, 3, 4])
    dev = FakeDevice(reads=[padded(cid + bytes([1]), fill=2)])
    dev.cid = cid
    assert read_cont_packet(dev, 1, 500) == bytes([2] * 59)


def test_read_cont_packet_wrong_sequence():
    cid = bytes([1, 2, 3, 4])
    dev = FakeDevice(reads=[padded(cid + bytes([3]))])
    dev.cid = cid
    with pytest.raises(DeviceError, match="invalid sequence number"):
        read_cont_packet(dev, 0, 10)


def test_read_cont_packet_short_frame():
    cid = bytes([1, 2, 3, 4])
    dev = FakeDevice(reads=[cid + bytes([0, 1, 2])])
    dev.cid = cid
    with pytest.raises(DeviceError, match="invalid cont packet"):
        read_cont_packet(dev, 0, 10)


NONCE = bytes([0x08, 0x07, 0x06, 0x05, 0x04, 0x03, 0x02, 0x01])


def test_init_response_parse():
    data = NONCE + bytes([0xDE, 0xAD, 0xBE, 0xEF, 0x02, 0x04, 0x01, 0x08, 0x01])
    rsp = InitResponse.parse(data, NONCE)
    assert rsp == InitResponse(bytes([0xDE, 0xAD, 0xBE, 0xEF]), 2, 4, 1, 8, 1)


def test_init_response_wrong_length():
    with pytest.raises(DeviceError, match="invalid init response"):
        InitResponse.parse(NONCE + bytes(8), NONCE)


def test_init_response_wrong_nonce():
    data = bytes(8) + bytes(9)
    with pytest.raises(DeviceError, match="invalid nonce"):
        InitResponse.parse(data, NONCE)


def test_init_response_bad_nonce_size():
    with pytest.raises(ValueError):
        InitResponse.parse(bytes(17), bytes(4))