"""
JSON-RPC Client Test Suite

Origin-chain and aggregator clients over a scripted HTTP session.
"""

import unittest

import requests

from solbridge.errors import RequestIdExists, RpcError, TargetNetworkError
from solbridge.rpc import OriginRpc, SolanaRpcClient
from solbridge.target import AggregatorClient


class FakeResponse:
    def __init__(self, payload=None, status=200, body_error=None):
        self.payload = payload
        self.status = status
        self.body_error = body_error

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Server Error")

    def json(self):
        if self.body_error:
            raise self.body_error
        return self.payload


class FakeSession:
    """Replays queued responses and records request bodies."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.headers = {}

    def post(self, url, json=None, timeout=None):
        self.requests.append(json)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def ok(result):
    return FakeResponse({"jsonrpc": "2.0", "id": 1, "result": result})


def error(code, message="error"):
    return FakeResponse({"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}})


class ReadOnlyRpc(OriginRpc):
    def get_transaction(self, signature, commitment="confirmed"):
        return None

    def get_signature_statuses(self, signatures):
        return [None for _ in signatures]

    def get_block(self, slot, commitment="finalized"):
        return None

    def get_slot(self, commitment="finalized"):
        return 0

    def get_signatures_for_address(self, address, limit=1000, before=None, until=None):
        return []


class TestOriginRpcInterface(unittest.TestCase):

    def test_lock_submission_methods_are_required(self):
        """An implementation without the write side cannot be constructed."""
        with self.assertRaises(TypeError):
            ReadOnlyRpc()


class TestSolanaRpcClient(unittest.TestCase):

    def client(self, *responses):
        self.session = FakeSession(*responses)
        return SolanaRpcClient("http://localhost:8899", session=self.session)

    def test_get_transaction_requests_base64(self):
        rpc = self.client(ok({"slot": 900}))
        self.assertEqual(rpc.get_transaction("sig"), {"slot": 900})
        body = self.session.requests[0]
        self.assertEqual(body["method"], "getTransaction")
        self.assertEqual(body["params"][1]["encoding"], "base64")
        self.assertEqual(body["params"][1]["maxSupportedTransactionVersion"], 0)

    def test_unknown_transaction_is_none(self):
        self.assertIsNone(self.client(ok(None)).get_transaction("sig"))

    def test_signature_status(self):
        rpc = self.client(ok({"context": {"slot": 1}, "value": [{"confirmationStatus": "finalized", "err": None}]}))
        self.assertEqual(rpc.get_signature_status("sig")["confirmationStatus"], "finalized")

    def test_missing_statuses_padded(self):
        rpc = self.client(ok({"value": None}))
        self.assertEqual(rpc.get_signature_statuses(["a", "b"]), [None, None])

    def test_unavailable_block_is_none(self):
        """Skipped and not-yet-available slots are not errors."""
        rpc = self.client(error(-32004), error(-32007))
        self.assertIsNone(rpc.get_block(900))
        self.assertIsNone(rpc.get_block(901))

    def test_other_block_errors_raise(self):
        with self.assertRaises(RpcError):
            self.client(error(-32602, "invalid params")).get_block(900)

    def test_transport_failures_raise_rpc_error(self):
        cases = [
            requests.ConnectionError("refused"),
            FakeResponse(status=503),
            FakeResponse(body_error=ValueError("not json")),
        ]
        for response in cases:
            with self.subTest(response=response):
                with self.assertRaises(RpcError):
                    self.client(response).get_slot()

    def test_signatures_for_address_options(self):
        rpc = self.client(ok([{"signature": "s1", "slot": 5}]))
        self.assertEqual(rpc.get_signatures_for_address("prog", limit=50, until="s0"), [{"signature": "s1", "slot": 5}])
        opts = self.session.requests[0]["params"][1]
        self.assertEqual(opts, {"limit": 50, "commitment": "confirmed", "until": "s0"})

    def test_request_ids_increase(self):
        rpc = self.client(ok(1), ok(2))
        rpc.get_slot()
        rpc.get_slot()
        self.assertEqual([r["id"] for r in self.session.requests], [1, 2])


class TestAggregatorClient(unittest.TestCase):

    AUTH = {"algorithm": "secp256k1", "publicKey": "02" * 33, "signature": "00" * 65, "stateHash": "00" * 32}

    def client(self, *responses, api_key=None):
        self.session = FakeSession(*responses)
        return AggregatorClient("http://localhost:3000", api_key=api_key, session=self.session)

    def test_submit_commitment(self):
        client = self.client(ok({"status": "SUCCESS"}), api_key="secret")
        self.assertEqual(client.submit_commitment("ab" * 32, "cd" * 32, self.AUTH), "ab" * 32)
        self.assertEqual(self.session.headers["X-API-Key"], "secret")
        self.assertEqual(self.session.requests[0]["method"], "submit_commitment")

    def test_existing_request_id(self):
        with self.assertRaises(RequestIdExists):
            self.client(ok({"status": "REQUEST_ID_EXISTS"})).submit_commitment("ab" * 32, "cd" * 32, self.AUTH)

    def test_rejected_commitment(self):
        with self.assertRaises(TargetNetworkError):
            self.client(ok({"status": "AUTHENTICATOR_VERIFICATION_FAILED"})).submit_commitment(
                "ab" * 32, "cd" * 32, self.AUTH)

    def test_inclusion_proof(self):
        proof = {
            "requestId": "ab" * 32,
            "transactionHash": "cd" * 32,
            "authenticator": self.AUTH,
            "merkleTreePath": {"root": "ef" * 32, "leafIndex": 0, "steps": []},
        }
        client = self.client(ok(None), ok(proof))
        self.assertIsNone(client.get_inclusion_proof("ab" * 32))
        self.assertEqual(client.get_inclusion_proof("ab" * 32).to_dict(), proof)

    def test_malformed_inclusion_proof(self):
        with self.assertRaises(TargetNetworkError):
            self.client(ok({"requestId": "ab" * 32})).get_inclusion_proof("ab" * 32)

    def test_unreachable(self):
        with self.assertRaises(TargetNetworkError):
            self.client(requests.ConnectionError("refused")).get_inclusion_proof("ab" * 32)


if __name__ == "__main__":
    unittest.main()
