"""
Lock Event Extraction Test Suite

Covers the TokenLocked binary layout, the recipient tag round-trip and
every malformed-input path.
"""

import base64
import hashlib
import struct
import unittest

import base58

from solbridge.errors import InvalidEventStructure, MalformedEvent
from solbridge.events import (
    PROGRAM_DATA_PREFIX,
    TOKEN_LOCKED_DISCRIMINATOR,
    LockEvent,
    canonical_recipient,
    encode_lock_event,
    encode_log_line,
    extract_lock_event,
    find_lock_event,
    on_chain_recipient,
)

USER = base58.b58encode(hashlib.sha256(b"user").digest()).decode("ascii")
DIGEST = "0f" * 32


def make_event(**overrides):
    fields = dict(
        lock_id=hashlib.sha256(b"lock").digest(),
        user=USER,
        amount=100000000,
        target_recipient=f"[SHA256]{DIGEST}",
        nonce=0,
        timestamp=1700000000,
    )
    fields.update(overrides)
    return LockEvent(**fields)


class TestRecipientTag(unittest.TestCase):

    def test_bare_digest_gets_tag(self):
        """A 64-hex recipient is restored to its tagged form."""
        self.assertEqual(canonical_recipient(DIGEST), f"[SHA256]{DIGEST}")

    def test_tagged_and_other_recipients_unchanged(self):
        """Already tagged or non-digest recipients pass through."""
        self.assertEqual(canonical_recipient(f"[SHA256]{DIGEST}"), f"[SHA256]{DIGEST}")
        self.assertEqual(canonical_recipient("alice"), "alice")
        self.assertEqual(canonical_recipient(DIGEST[:-2]), DIGEST[:-2])

    def test_on_chain_form_strips_tag(self):
        """The on-chain form fits the 64 character limit."""
        self.assertEqual(on_chain_recipient(f"[SHA256]{DIGEST}"), DIGEST)
        self.assertEqual(len(on_chain_recipient(f"[SHA256]{DIGEST}")), 64)


class TestExtraction(unittest.TestCase):

    def test_round_trip(self):
        """extract(serialize(E)) == E for a canonical event."""
        event = make_event()
        self.assertEqual(extract_lock_event(encode_lock_event(event)), event)
        self.assertEqual(extract_lock_event(encode_log_line(event)), event)

    def test_round_trip_extremes(self):
        """u64 and i64 bounds survive the encoding."""
        event = make_event(amount=2 ** 64 - 1, nonce=2 ** 64 - 1, timestamp=2 ** 63 - 1,
                           target_recipient="x" * 64)
        self.assertEqual(extract_lock_event(encode_lock_event(event)), event)

    def test_scenario_a_recipient_restored(self):
        """A stripped on-chain recipient is re-tagged by the extractor."""
        event = make_event(target_recipient=DIGEST)
        extracted = extract_lock_event(encode_log_line(event))
        self.assertEqual(extracted.target_recipient, f"[SHA256]{DIGEST}")
        self.assertEqual(extracted.amount, 100000000)
        self.assertEqual(extracted.nonce, 0)
        self.assertEqual(extracted.timestamp, 1700000000)

    def test_wire_layout(self):
        """Fields are little-endian and the recipient is length-prefixed."""
        data = encode_lock_event(make_event())
        self.assertEqual(data[:8], TOKEN_LOCKED_DISCRIMINATOR)
        self.assertEqual(struct.unpack_from("<Q", data, 72)[0], 100000000)
        self.assertEqual(struct.unpack_from("<I", data, 80)[0], 64)
        self.assertEqual(data[84:148].decode(), DIGEST)
        self.assertEqual(len(data), 8 + 32 + 32 + 8 + 4 + 64 + 8 + 8)

    def test_empty_data_rejected(self):
        with self.assertRaises(MalformedEvent):
            extract_lock_event(b"")

    def test_wrong_discriminator_rejected(self):
        """Another event's discriminator is not a lock event."""
        data = b"\x00" * 8 + encode_lock_event(make_event())[8:]
        with self.assertRaises(MalformedEvent):
            extract_lock_event(data)

    def test_truncated_rejected(self):
        """Every truncation point is a malformed event."""
        data = encode_lock_event(make_event())
        for cut in (7, 8, 39, 72, 80, 83, 100, len(data) - 1):
            with self.subTest(cut=cut):
                with self.assertRaises(MalformedEvent):
                    extract_lock_event(data[:cut])

    def test_trailing_bytes_rejected(self):
        with self.assertRaises(MalformedEvent):
            extract_lock_event(encode_lock_event(make_event()) + b"\x00")

    def test_oversized_recipient_length_rejected(self):
        """A length prefix beyond the buffer is caught, not sliced short."""
        data = bytearray(encode_lock_event(make_event()))
        struct.pack_into("<I", data, 80, 10_000)
        with self.assertRaises(MalformedEvent):
            extract_lock_event(bytes(data))

    def test_invalid_utf8_recipient_rejected(self):
        data = bytearray(encode_lock_event(make_event(target_recipient="ab")))
        data[84] = 0xFF
        with self.assertRaises(MalformedEvent):
            extract_lock_event(bytes(data))

    def test_non_program_data_line_rejected(self):
        with self.assertRaises(MalformedEvent):
            extract_lock_event("Program log: Instruction: LockSol")

    def test_bad_base64_rejected(self):
        with self.assertRaises(MalformedEvent):
            extract_lock_event(PROGRAM_DATA_PREFIX + "!!!not-base64!!!")


class TestFindLockEvent(unittest.TestCase):

    def test_skips_unrelated_program_data(self):
        """Other events' data lines are skipped; the lock event is found."""
        other = PROGRAM_DATA_PREFIX + base64.b64encode(b"\x01" * 20).decode()
        logs = ["Program X invoke [1]", other, encode_log_line(make_event()), "Program X success"]
        self.assertEqual(find_lock_event(logs), make_event())

    def test_no_event(self):
        self.assertIsNone(find_lock_event(["Program log: hello"]))
        self.assertIsNone(find_lock_event([]))


class TestStructure(unittest.TestCase):

    def test_valid_event_has_no_problems(self):
        self.assertEqual(make_event().structural_problems(), [])
        make_event().validate()

    def test_zero_amount_rejected(self):
        with self.assertRaises(InvalidEventStructure):
            make_event(amount=0).validate()

    def test_problems_are_all_reported(self):
        """Every violated constraint is listed, not just the first."""
        event = make_event(lock_id=b"short", user="", amount=0, target_recipient="", timestamp=0)
        with self.assertRaises(InvalidEventStructure) as ctx:
            event.validate()
        self.assertEqual(len(ctx.exception.detail["problems"]), 5)

    def test_user_must_be_account_key(self):
        self.assertTrue(make_event(user="0OIl").structural_problems())
        self.assertTrue(make_event(user=base58.b58encode(b"abc").decode()).structural_problems())

    def test_dict_form(self):
        """The dict form is all strings and restores the tag on the way back."""
        event = make_event()
        data = event.to_dict()
        self.assertTrue(all(isinstance(v, str) for v in data.values()))
        data["targetRecipient"] = DIGEST
        self.assertEqual(LockEvent.from_dict(data), event)

    def test_dict_form_missing_field(self):
        data = make_event().to_dict()
        del data["nonce"]
        with self.assertRaises(InvalidEventStructure):
            LockEvent.from_dict(data)


if __name__ == "__main__":
    unittest.main()
