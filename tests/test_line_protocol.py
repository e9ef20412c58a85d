"""Tests for the line protocol encoder."""

import math

import pytest

from fieldgate.common.config import Device, Register, RegisterMap
from fieldgate.common.readings import Reading
from fieldgate.services.telemetry.line_protocol import (
    device_tags,
    encode_line,
    encode_readings,
    escape_measurement,
    escape_tag,
    format_value,
)


class TestEscaping:

    def test_measurement_escapes_comma_and_space(self):
        assert escape_measurement("gas density,raw") == "gas\\ density\\,raw"

    def test_measurement_keeps_equals(self):
        assert escape_measurement("a=b") == "a=b"

    def test_tag_escapes_equals(self):
        assert escape_tag("k=v, x") == "k\\=v\\,\\ x"

    def test_encode_line_escapes_everything(self):
        line = encode_line("my meas", [("a b", "c,d=e")], 1.5, 1700000000)
        assert line == "my\\ meas,a\\ b=c\\,d\\=e value=1.5 1700000000\n"


class TestFormatValue:

    def test_int(self):
        assert format_value(42) == "42"

    def test_negative_int(self):
        assert format_value(-7) == "-7"

    def test_float_uses_repr(self):
        assert format_value(0.1) == "0.1"
        assert format_value(2.0) == "2.0"

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, True, "1"])
    def test_rejects_unencodable(self, value):
        with pytest.raises(ValueError):
            format_value(value)


class TestEncodeLine:

    def test_no_tags(self):
        assert encode_line("pressure", [], 3, 10) == "pressure value=3 10\n"

    def test_tags_keep_order(self):
        line = encode_line("t", [("z", "1"), ("a", "2")], 1, 0)
        assert line == "t,z=1,a=2 value=1 0\n"


def _device() -> Device:
    registers = RegisterMap([
        Register(address=0, name="pressure", tags=(("unit", "bar"),)),
        Register(address=12, name="temperature", tags=(("unit", "°C"),)),
    ])
    return Device(
        unit_id=3,
        group="gdt20",
        scan_interval=2.0,
        register_map=registers,
        tags=(("sensor", "WIKA GDT20"), ("phase", "L3")),
    )


class TestEncodeReadings:

    def test_tag_order(self):
        assert device_tags(_device(), 12) == [
            ("group", "gdt20"),
            ("device", "3"),
            ("address", "12"),
            ("sensor", "WIKA GDT20"),
            ("phase", "L3"),
            ("unit", "°C"),
        ]

    def test_one_line_per_reading(self):
        body = encode_readings(
            _device(),
            [Reading(0, 5.25, 1700000000), Reading(12, 21.5, 1700000000)],
        )
        assert body == (
            "pressure,group=gdt20,device=3,address=0,sensor=WIKA\\ GDT20,phase=L3,unit=bar "
            "value=5.25 1700000000\n"
            "temperature,group=gdt20,device=3,address=12,sensor=WIKA\\ GDT20,phase=L3,unit=°C "
            "value=21.5 1700000000\n"
        )

    def test_empty(self):
        assert encode_readings(_device(), []) == ""

    def test_unknown_address_raises(self):
        with pytest.raises(KeyError):
            encode_readings(_device(), [Reading(99, 1.0, 0)])


class TestReferenceLine:

    def test_reference_escaping(self):
        line = encode_line("a,b c", [("k=1", "v 2")], 5, 100)
        assert line == "a\\,b\\ c,k\\=1=v\\ 2 value=5 100\n"
