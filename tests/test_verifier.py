"""
Token Verifier Test Suite

Independent re-verification of minted artifacts, including tampered
signatures, payloads and origin anchors.
"""

import copy
import unittest

from solbridge.canonicalization import from_token_data, to_token_data
from solbridge.hashing import sha256_hex
from solbridge.identity import CommitmentDeriver
from solbridge.minter import MintSubmitter
from solbridge.signing import MinterKeyPair
from solbridge.target import InMemoryTargetNetwork
from solbridge.verifier import CheckStatus, TokenVerifier

from fakes import PROGRAM_ID, FakeSolanaRpc, validated_proof


def rewrite_payload(artifact, **changes):
    """Re-encode the token payload with ``changes`` applied, keeping dataHash consistent."""
    artifact = copy.deepcopy(artifact)
    data = artifact["genesis"]["data"]
    payload = from_token_data(data["tokenData"])
    payload.update(changes)
    data["tokenData"] = to_token_data(payload)
    data["dataHash"] = sha256_hex(bytes.fromhex(data["tokenData"]))
    return artifact


class VerifierTestCase(unittest.TestCase):

    def setUp(self):
        self.rpc = FakeSolanaRpc(finalized_slot=1000)
        self.minter = MinterKeyPair.from_hex("11" * 32)
        submitter = MintSubmitter(InMemoryTargetNetwork(), CommitmentDeriver(self.minter, PROGRAM_ID))
        self.result = submitter.submit(validated_proof(self.rpc, recipient=self.minter.address, slot=900))
        self.artifact = self.result.artifact
        self.verifier = TokenVerifier(self.rpc, PROGRAM_ID)


class TestValidToken(VerifierTestCase):

    def test_minted_token_is_valid(self):
        report = self.verifier.verify(self.artifact)
        self.assertTrue(report.is_valid, report.render())
        self.assertEqual(report.verdict, "VALID")
        self.assertEqual(report.asset_id, self.result.commitment.asset_id)
        self.assertEqual(report.warnings, [])
        for check in ("inclusion_proof", "minter_signature", "asset_id", "asset_class_id",
                      "request_id", "origin_status", "embedded_transaction", "origin_event"):
            with self.subTest(check=check):
                self.assertEqual(report.status_of(check), CheckStatus.PASS)

    def test_offline_verification_warns(self):
        """Without RPC the token still verifies, with origin checks as warnings."""
        report = TokenVerifier().verify(self.artifact)
        self.assertTrue(report.is_valid)
        self.assertEqual(report.status_of("origin_status"), CheckStatus.WARN)
        self.assertEqual(report.status_of("asset_class_id"), CheckStatus.WARN)
        self.assertEqual(report.status_of("embedded_event"), CheckStatus.PASS)
        self.assertIsNone(report.status_of("origin_event"))

    def test_report_serialization(self):
        report = self.verifier.verify(self.artifact)
        data = report.to_dict()
        self.assertEqual(data["verdict"], "VALID")
        self.assertIn("RESULT: VALID", report.render())


class TestTamperedToken(VerifierTestCase):

    def test_scenario_d_altered_minter_signature(self):
        """Changing one byte of the minter signature invalidates the token."""
        payload = from_token_data(self.artifact["genesis"]["data"]["tokenData"])
        signature = bytearray.fromhex(payload["minterSignature"])
        signature[0] ^= 0x01
        report = self.verifier.verify(rewrite_payload(self.artifact, minterSignature=signature.hex()))
        self.assertEqual(report.status_of("minter_signature"), CheckStatus.FAIL)
        self.assertEqual(report.verdict, "INVALID")

    def test_altered_token_data(self):
        """Editing tokenData in place breaks the hashes committed to the aggregator."""
        artifact = copy.deepcopy(self.artifact)
        data = artifact["genesis"]["data"]
        data["tokenData"] = data["tokenData"][:-2] + ("00" if data["tokenData"][-2:] != "00" else "01")
        report = self.verifier.verify(artifact)
        self.assertEqual(report.status_of("genesis_transaction_hash"), CheckStatus.FAIL)
        self.assertFalse(report.is_valid)

    def test_inflated_amount(self):
        payload = from_token_data(self.artifact["genesis"]["data"]["tokenData"])
        lock = dict(payload["lockEvent"], amount="900000000")
        report = self.verifier.verify(rewrite_payload(self.artifact, lockEvent=lock))
        self.assertFalse(report.is_valid)
        self.assertEqual(report.status_of("asset_id"), CheckStatus.FAIL)
        self.assertEqual(report.status_of("origin_event"), CheckStatus.FAIL)

    def test_wrong_declared_asset_id(self):
        artifact = copy.deepcopy(self.artifact)
        artifact["genesis"]["data"]["tokenId"] = "00" * 32
        report = self.verifier.verify(artifact)
        self.assertEqual(report.status_of("asset_id"), CheckStatus.FAIL)

    def test_wrong_program(self):
        report = TokenVerifier(self.rpc, "11111111111111111111111111111111").verify(self.artifact)
        self.assertEqual(report.status_of("asset_class_id"), CheckStatus.FAIL)
        self.assertEqual(report.status_of("embedded_transaction"), CheckStatus.FAIL)

    def test_unknown_origin_transaction(self):
        """A token anchored to a transaction the chain never saw is invalid."""
        report = TokenVerifier(FakeSolanaRpc(), PROGRAM_ID).verify(self.artifact)
        self.assertEqual(report.status_of("origin_status"), CheckStatus.FAIL)
        self.assertFalse(report.is_valid)

    def test_wrong_bridge_type(self):
        report = self.verifier.verify(rewrite_payload(self.artifact, bridgeType="OTHER"))
        self.assertEqual(report.status_of("payload_decode"), CheckStatus.FAIL)

    def test_missing_structure(self):
        report = self.verifier.verify({})
        self.assertEqual(report.status_of("artifact_structure"), CheckStatus.FAIL)
        self.assertEqual(report.verdict, "INVALID")


class TestMalformedArtifact(VerifierTestCase):
    """Wrongly typed fields fail their check instead of aborting verification."""

    def with_inclusion(self, **changes):
        artifact = copy.deepcopy(self.artifact)
        artifact["genesis"]["inclusionProof"].update(changes)
        return artifact

    def test_authenticator_not_an_object(self):
        report = self.verifier.verify(self.with_inclusion(authenticator="x"))
        self.assertEqual(report.status_of("inclusion_proof"), CheckStatus.FAIL)
        self.assertEqual(report.verdict, "INVALID")

    def test_merkle_path_not_an_object(self):
        report = self.verifier.verify(self.with_inclusion(merkleTreePath=["root"]))
        self.assertEqual(report.status_of("inclusion_proof"), CheckStatus.FAIL)
        self.assertEqual(report.verdict, "INVALID")

    def test_raw_transaction_not_an_object(self):
        payload = from_token_data(self.artifact["genesis"]["data"]["tokenData"])
        origin = dict(payload["originTransaction"], rawTransaction="AQID")
        report = self.verifier.verify(rewrite_payload(self.artifact, originTransaction=origin))
        self.assertEqual(report.status_of("embedded_transaction"), CheckStatus.FAIL)
        self.assertEqual(report.verdict, "INVALID")


if __name__ == "__main__":
    unittest.main()
