"""
Confirmation Oracle Test Suite

Three-way block verdicts, the pending/accept age boundary and trusted
checkpoints.
"""

import unittest

from solbridge.errors import RpcError, TransactionFailed, TransactionNotFound
from solbridge.oracle import BlockVerdict, ConfirmationOracle, VerdictStatus

from fakes import FakeSolanaRpc, blockhash_for


class TestBlockVerification(unittest.TestCase):

    def setUp(self):
        self.rpc = FakeSolanaRpc(finalized_slot=1000)
        self.oracle = ConfirmationOracle(self.rpc, pending_threshold=10)

    def test_matching_finalized_block(self):
        block_hash = self.rpc.add_block(900)
        verdict = self.oracle.verify_block_hash(block_hash, 900)
        self.assertEqual(verdict.status, VerdictStatus.VERIFIED)
        self.assertEqual(verdict.block_hash, block_hash)

    def test_mismatched_block_fails(self):
        """A claimed hash that differs from the finalized block is rejected."""
        self.rpc.add_block(900)
        verdict = self.oracle.verify_block_hash(blockhash_for(901), 900)
        self.assertEqual(verdict.status, VerdictStatus.FAILED)
        self.assertIn("mismatch", verdict.reason)

    def test_unclaimed_hash_is_resolved(self):
        block_hash = self.rpc.add_block(900)
        verdict = self.oracle.verify_block_hash("", 900)
        self.assertTrue(verdict.is_verified)
        self.assertEqual(verdict.block_hash, block_hash)

    def test_block_ahead_of_finalized_is_pending(self):
        """Age -5: the block is ahead of the finalized frontier."""
        verdict = self.oracle.verify_block_hash(blockhash_for(1005), 1005)
        self.assertEqual(verdict.status, VerdictStatus.PENDING)
        self.assertEqual(verdict.block_age, -5)
        self.assertFalse(verdict.is_verified)

    def test_boundary_one_below_threshold_is_pending(self):
        self.rpc.block_lookup_fails = True
        verdict = self.oracle.verify_block_hash(blockhash_for(991), 991)
        self.assertEqual(verdict.status, VerdictStatus.PENDING)
        self.assertEqual(verdict.block_age, 9)

    def test_boundary_at_threshold_is_definitive(self):
        """At the threshold the verdict is definitive and the hash is cached."""
        self.rpc.block_lookup_fails = True
        block_hash = blockhash_for(990)
        verdict = self.oracle.verify_block_hash(block_hash, 990)
        self.assertEqual(verdict.status, VerdictStatus.VERIFIED)
        self.assertTrue(self.oracle.is_trusted(block_hash))

    def test_every_age_yields_exactly_one_verdict(self):
        self.rpc.block_lookup_fails = True
        for height in range(985, 1006):
            with self.subTest(height=height):
                verdict = self.oracle.verify_block_hash(blockhash_for(height), height)
                flags = [verdict.is_verified, verdict.is_pending, verdict.status == VerdictStatus.FAILED]
                self.assertEqual(flags.count(True), 1)
                self.assertEqual(verdict.is_pending, 1000 - height < 10)

    def test_invalid_hash_format_fails(self):
        self.rpc.block_lookup_fails = True
        verdict = self.oracle.verify_block_hash("not-a-blockhash!", 900)
        self.assertEqual(verdict.status, VerdictStatus.FAILED)

    def test_unclaimed_hash_without_block_fails_when_old(self):
        self.rpc.block_lookup_fails = True
        verdict = self.oracle.verify_block_hash("", 900)
        self.assertEqual(verdict.status, VerdictStatus.FAILED)

    def test_unclaimed_hash_without_block_is_pending_when_recent(self):
        verdict = self.oracle.verify_block_hash("", 1003)
        self.assertTrue(verdict.is_pending)

    def test_trusted_hash_short_circuits(self):
        """A trusted checkpoint verifies without querying the chain."""
        oracle = ConfirmationOracle(self.rpc, trusted_hashes=[blockhash_for(500)])
        verdict = oracle.verify_block_hash(blockhash_for(500), 500)
        self.assertTrue(verdict.is_verified)
        self.assertEqual(self.rpc.calls, [])

    def test_unavailable_slot_propagates(self):
        """Without the finalized slot no verdict can be given."""
        self.rpc.unavailable = True
        with self.assertRaises(RpcError):
            self.oracle.verify_block_hash(blockhash_for(900), 900)

    def test_negative_threshold_rejected(self):
        with self.assertRaises(ValueError):
            ConfirmationOracle(self.rpc, pending_threshold=-1)

    def test_verdict_constructors(self):
        self.assertTrue(BlockVerdict.verified("h").is_verified)
        self.assertTrue(BlockVerdict.pending("young").is_pending)
        self.assertEqual(BlockVerdict.failed("bad").status, VerdictStatus.FAILED)


class TestConfirmation(unittest.TestCase):

    def setUp(self):
        self.rpc = FakeSolanaRpc()
        self.oracle = ConfirmationOracle(self.rpc)

    def test_finalized_transaction(self):
        signature = self.rpc.add_lock()
        record = self.oracle.get_confirmation(signature)
        self.assertEqual(record.confirmation_status, "finalized")
        self.assertTrue(record.usable)

    def test_unknown_transaction(self):
        with self.assertRaises(TransactionNotFound):
            self.oracle.get_confirmation("1111111111111111111111111111111111111111111111111111111111111111")

    def test_failed_transaction(self):
        signature = self.rpc.add_lock(err={"InstructionError": [0, "Custom"]})
        with self.assertRaises(TransactionFailed):
            self.oracle.get_confirmation(signature)

    def test_latest_finalized_checkpoint(self):
        """The checkpoint is the finalized block and becomes trusted."""
        block_hash = self.rpc.add_block(1000)
        checkpoint = self.oracle.get_latest_finalized_checkpoint()
        self.assertEqual(checkpoint.slot, 1000)
        self.assertEqual(checkpoint.block_hash, block_hash)
        self.assertTrue(self.oracle.is_trusted(block_hash))
        self.assertEqual(checkpoint.to_dict()["blockHash"], block_hash)

    def test_checkpoint_unavailable(self):
        with self.assertRaises(RpcError):
            self.oracle.get_latest_finalized_checkpoint()


if __name__ == "__main__":
    unittest.main()
