"""Tests for the QR identity codec."""

import json

import pytest

from scangrade.identity.qr_codec import (
    StudentCode,
    StudentPageCode,
    StudentQuestionCode,
    decode,
    encode,
    make_qr_image,
)


class TestEncodeDecode:

    @pytest.mark.parametrize("payload", [
        StudentQuestionCode("stu-1", "q-7"),
        StudentCode("stu-1"),
        StudentPageCode("stu-1", 2, 4),
        StudentPageCode("stu-1", 1),
    ])
    def test_every_version_survives_a_round_trip(self, payload):
        assert decode(encode(payload)) == payload

    def test_wire_format_uses_compact_keys(self):
        assert json.loads(encode(StudentQuestionCode("a", "b"))) == {"v": 1, "s": "a", "q": "b"}
        assert json.loads(encode(StudentCode("a"))) == {"v": 2, "type": "student", "s": "a"}
        assert json.loads(encode(StudentPageCode("a", 3))) == {"v": 3, "type": "student-page", "s": "a", "p": 3}

    def test_encode_rejects_other_objects(self):
        with pytest.raises(TypeError):
            encode({"v": 2, "s": "a"})

    def test_decode_accepts_bytes(self):
        assert decode(b'{"v":2,"type":"student","s":"x"}') == StudentCode("x")


class TestUnrecognizedPayloads:

    @pytest.mark.parametrize("raw", [
        "",
        "PA-12345",
        "not json {",
        "[1, 2, 3]",
        "42",
        "null",
        '{"s": "stu-1"}',
        '{"v": "3", "type": "student-page", "s": "a", "p": 1}',
        '{"v": true, "type": "student", "s": "a"}',
        '{"v": 9, "type": "student", "s": "a"}',
        '{"v": 2, "type": "student"}',
        '{"v": 2, "type": "student", "s": ""}',
        '{"v": 2, "s": "a"}',
        '{"v": 3, "type": "student-page", "s": "a", "p": 0}',
        '{"v": 3, "type": "student-page", "s": "a", "p": true}',
        '{"v": 3, "type": "student-page", "s": "a", "p": 1, "t": "two"}',
        '{"v": 1, "s": "a"}',
        "[" * 5000,
    ])
    def test_decode_returns_none_and_never_raises(self, raw):
        assert decode(raw) is None

    @pytest.mark.parametrize("raw", [None, 12, 3.5, ["v"], {"v": 2}])
    def test_non_text_input_is_unrecognized(self, raw):
        assert decode(raw) is None

    def test_invalid_utf8_bytes_are_unrecognized(self):
        assert decode(b"\xff\xfe\x00") is None


class TestQRImage:

    def test_renders_png(self):
        png = make_qr_image(StudentPageCode("stu-1", 1, 2))
        assert png.startswith(b"\x89PNG")
