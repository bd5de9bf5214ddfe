"""
Proof Builder and Validator Test Suite

Exercises the validation pipeline against the in-memory origin chain,
including blocks ahead of the finalized frontier and forged transactions.
"""

import unittest
from dataclasses import replace

from solbridge.errors import (
    BlockVerificationFailed,
    InvalidEventStructure,
    ProgramNotInvoked,
    SignatureMismatch,
    TransactionFailed,
    TransactionNotFound,
    TransactionValidationFailed,
)
from solbridge.oracle import ConfirmationOracle
from solbridge.proof import ProofBuilder
from solbridge.validator import ProofValidator, ValidatedProof, ValidationStatus

from fakes import HEX_RECIPIENT, PROGRAM_ID, FakeSolanaRpc, blockhash_for


class ValidatorTestCase(unittest.TestCase):

    def setUp(self):
        self.rpc = FakeSolanaRpc(finalized_slot=1000)
        self.oracle = ConfirmationOracle(self.rpc, pending_threshold=10)
        self.builder = ProofBuilder(self.rpc, self.oracle)
        self.validator = ProofValidator(self.rpc, self.oracle, PROGRAM_ID)

    def build(self, signature, slot=None):
        proof = self.builder.extract_and_build(signature, slot)
        self.assertIsNotNone(proof)
        return proof


class TestProofBuilder(ValidatorTestCase):

    def test_proof_binds_event_to_transaction(self):
        signature = self.rpc.add_lock(slot=900)
        proof = self.build(signature)
        self.assertEqual(proof.signature, signature)
        self.assertEqual(proof.slot, 900)
        self.assertEqual(proof.block_height, 900)
        self.assertEqual(proof.block_hash, blockhash_for(900))
        self.assertEqual(proof.event.target_recipient, f"[SHA256]{HEX_RECIPIENT}")
        self.assertEqual(proof.transaction.primary_signature, signature)

    def test_transaction_without_event(self):
        signature = self.rpc.add_lock(with_event=False)
        self.assertIsNone(self.builder.extract_and_build(signature))

    def test_unknown_transaction(self):
        with self.assertRaises(TransactionNotFound):
            self.builder.extract_and_build("1" * 64)

    def test_failed_transaction(self):
        signature = self.rpc.add_lock(err={"InstructionError": [0, "Custom"]})
        with self.assertRaises(TransactionFailed):
            self.builder.extract_and_build(signature)

    def test_unresolvable_block_hash_is_empty(self):
        """Block hash lookup is best effort."""
        signature = self.rpc.add_lock(slot=900)
        self.rpc.block_lookup_fails = True
        self.assertEqual(self.build(signature).block_hash, "")


class TestProofValidator(ValidatorTestCase):

    def test_finalized_lock_is_validated(self):
        proof = self.build(self.rpc.add_lock(slot=900))
        validated = self.validator.validate(proof)
        self.assertEqual(validated.status, ValidationStatus.VALIDATED)
        self.assertTrue(validated.validation.block_verified)
        self.assertTrue(validated.validation.confirmation_verified)
        self.assertIsNone(validated.validation.reason)

    def test_scenario_c_block_ahead_is_pending(self):
        """Block age -5 yields PENDING_VALIDATION without raising."""
        proof = self.build(self.rpc.add_lock(slot=1005, status="confirmed"))
        validated = self.validator.validate(proof)
        self.assertEqual(validated.status, ValidationStatus.PENDING_VALIDATION)
        self.assertFalse(validated.validation.block_verified)
        self.assertTrue(validated.validation.confirmation_verified)
        self.assertIn("ahead", validated.validation.reason)
        self.assertEqual(validated.to_dict()["validation"]["status"], "PENDING_VALIDATION")

    def test_block_mismatch_is_fatal(self):
        proof = self.build(self.rpc.add_lock(slot=900))
        proof.block_hash = blockhash_for(899)
        with self.assertRaises(BlockVerificationFailed):
            self.validator.validate(proof)

    def test_invalid_event_is_fatal(self):
        proof = self.build(self.rpc.add_lock(slot=900))
        proof.event = replace(proof.event, amount=0)
        with self.assertRaises(InvalidEventStructure):
            self.validator.validate(proof)

    def test_foreign_program_is_rejected(self):
        """A TokenLocked-shaped log from another program is not a lock."""
        proof = self.build(self.rpc.add_foreign_transaction(slot=900))
        with self.assertRaises(ProgramNotInvoked):
            self.validator.validate(proof)

    def test_foreign_program_rejected_while_pending(self):
        """Recent blocks skip the refetch but not the program check."""
        proof = self.build(self.rpc.add_foreign_transaction(slot=1005))
        with self.assertRaises(ProgramNotInvoked):
            self.validator.validate(proof)

    def test_unfinalized_refetch_uses_signature_status(self):
        signature = self.rpc.add_lock(slot=900)
        self.rpc.unfinalized.add(signature)
        validated = self.validator.validate(self.build(signature))
        self.assertEqual(validated.status, ValidationStatus.VALIDATED)

    def test_vanished_transaction_is_fatal(self):
        signature = self.rpc.add_lock(slot=900)
        proof = self.build(signature)
        self.rpc.unfinalized.add(signature)
        del self.rpc.statuses[signature]
        with self.assertRaises(TransactionValidationFailed):
            self.validator.validate(proof)

    def test_missing_confirmation_is_recorded(self):
        proof = self.build(self.rpc.add_lock(slot=900))
        proof.confirmation = None
        validated = self.validator.validate(proof)
        self.assertFalse(validated.validation.confirmation_verified)
        self.assertEqual(validated.status, ValidationStatus.VALIDATED)

    def test_serialized_form_round_trips(self):
        validated = self.validator.validate(self.build(self.rpc.add_lock(slot=900)))
        again = ValidatedProof.from_dict(validated.to_dict())
        self.assertEqual(again.to_dict(), validated.to_dict())
        self.assertEqual(again.event, validated.event)


class TestCryptographicChain(ValidatorTestCase):

    def setUp(self):
        super().setUp()
        self.signature = self.rpc.add_lock(slot=900)
        self.validated = self.validator.validate(self.build(self.signature))

    def test_valid_chain(self):
        self.assertTrue(self.validator.validate_cryptographic_chain(self.validated))

    def test_unknown_status(self):
        del self.rpc.statuses[self.signature]
        self.assertFalse(self.validator.validate_cryptographic_chain(self.validated))

    def test_failed_status(self):
        self.rpc.statuses[self.signature]["err"] = {"InstructionError": [0, "Custom"]}
        self.assertFalse(self.validator.validate_cryptographic_chain(self.validated))

    def test_weak_confirmation(self):
        self.validated.confirmation_status = "processed"
        self.assertFalse(self.validator.validate_cryptographic_chain(self.validated))

    def test_no_embedded_transaction_trusts_status(self):
        self.validated.raw_transaction = None
        self.assertTrue(self.validator.validate_cryptographic_chain(self.validated))

    def test_substituted_transaction_raises(self):
        """An embedded transaction with another signature is caught."""
        other = self.rpc.add_lock(slot=901)
        self.validated.raw_transaction = self.validator.validate(self.build(other)).raw_transaction
        with self.assertRaises(SignatureMismatch):
            self.validator.validate_cryptographic_chain(self.validated)


if __name__ == "__main__":
    unittest.main()
