"""Tests for webhook signing and subscriber-side verification."""

import hashlib
import hmac

from hookrelay.utils.security import sign, verify_signature

SECRET = "whsec_test"
BODY = b'{"event":"note.updated","data":{"path":"/courses/a.md"}}'
TS = 1718445600000


class TestSign:
    def test_matches_hmac_over_timestamp_dot_body(self):
        expected = hmac.new(
            SECRET.encode(), f"{TS}.".encode() + BODY, hashlib.sha256
        ).hexdigest()
        assert sign(SECRET, TS, BODY) == expected

    def test_deterministic(self):
        assert sign(SECRET, TS, BODY) == sign(SECRET, TS, BODY)

    def test_str_and_bytes_body_agree(self):
        assert sign(SECRET, TS, BODY.decode("utf-8")) == sign(SECRET, TS, BODY)

    def test_each_input_changes_digest(self):
        base = sign(SECRET, TS, BODY)
        assert sign("other", TS, BODY) != base
        assert sign(SECRET, TS + 1, BODY) != base
        assert sign(SECRET, TS, BODY + b" ") != base

    def test_hex_sha256_length(self):
        digest = sign(SECRET, TS, BODY)
        assert len(digest) == 64
        int(digest, 16)


class TestVerifySignature:
    def test_accepts_fresh_valid_request(self):
        signature = sign(SECRET, TS, BODY)
        assert verify_signature(SECRET, str(TS), BODY, signature, now_ms=TS + 1000)

    def test_rejects_tampered_body(self):
        signature = sign(SECRET, TS, BODY)
        assert not verify_signature(SECRET, str(TS), BODY.replace(b"a.md", b"b.md"), signature, now_ms=TS)

    def test_rejects_wrong_secret(self):
        signature = sign("someone-else", TS, BODY)
        assert not verify_signature(SECRET, str(TS), BODY, signature, now_ms=TS)

    def test_rejects_stale_timestamp(self):
        signature = sign(SECRET, TS, BODY)
        assert not verify_signature(
            SECRET, str(TS), BODY, signature, tolerance_seconds=300, now_ms=TS + 301_000
        )

    def test_rejects_timestamp_from_the_future(self):
        signature = sign(SECRET, TS, BODY)
        assert not verify_signature(SECRET, str(TS), BODY, signature, now_ms=TS - 600_000)

    def test_rejects_non_numeric_timestamp(self):
        assert not verify_signature(SECRET, "yesterday", BODY, "deadbeef", now_ms=TS)

    def test_rejects_missing_signature(self):
        assert not verify_signature(SECRET, str(TS), BODY, None, now_ms=TS)

    def test_rejects_non_ascii_signature(self):
        assert not verify_signature(SECRET, str(TS), BODY, "é" * 64, now_ms=TS)
