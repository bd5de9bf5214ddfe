import json
import os

import pytest

from solbridge.config import BridgeConfig
from solbridge.sinks import FileArtifactSink, S3ObjectLockSink, get_artifact_sink, token_file_name
from solbridge.target import AggregatorClient, InMemoryTargetNetwork, get_target_network


class FakeS3:
    def __init__(self):
        self.objects = []

    def put_object(self, **kwargs):
        self.objects.append(kwargs)
        return {"VersionId": "1"}


def test_defaults():
    config = BridgeConfig()
    assert config.pending_threshold == 10
    assert config.poll_interval == 3.0
    assert config.missed_poll_interval == 600.0
    assert config.allow_pending_mints is True
    assert config.state_file == os.path.join("bridge-output", "processed-transactions.json")
    assert config.validate() == []


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SOLBRIDGE_RPC_URL", "http://localhost:8899")
    monkeypatch.setenv("SOLBRIDGE_TARGET", "memory")
    monkeypatch.setenv("SOLBRIDGE_OUTPUT_DIR", str(tmp_path))
    monkeypatch.setenv("SOLBRIDGE_PENDING_SLOTS", "32")
    monkeypatch.setenv("SOLBRIDGE_ALLOW_PENDING_MINTS", "false")
    monkeypatch.setenv("SOLBRIDGE_TRUSTED_CHECKPOINTS", "hashA, hashB,,")
    monkeypatch.setenv("SOLBRIDGE_LOG_JSON", "0")

    config = BridgeConfig.from_env()
    assert config.rpc_url == "http://localhost:8899"
    assert config.target_mode == "memory"
    assert config.pending_threshold == 32
    assert config.allow_pending_mints is False
    assert config.trusted_checkpoints == ["hashA", "hashB"]
    assert config.log_json is False
    assert config.state_file == os.path.join(str(tmp_path), "processed-transactions.json")


def test_explicit_state_file(monkeypatch):
    monkeypatch.setenv("SOLBRIDGE_STATE_FILE", "/var/lib/solbridge/state.json")
    assert BridgeConfig.from_env().state_file == "/var/lib/solbridge/state.json"


@pytest.mark.parametrize("changes, problem", [
    ({"target_mode": "carrier-pigeon"}, "target_mode"),
    ({"artifact_sink": "s3_object_lock"}, "s3_bucket"),
    ({"pending_threshold": -1}, "pending_threshold"),
    ({"poll_interval": 0}, "poll intervals"),
    ({"s3_legal_hold": "MAYBE"}, "s3_legal_hold"),
    ({"program_id": ""}, "program_id"),
    ({"log_level": "LOUD"}, "log_level"),
])
def test_validate_reports_problems(changes, problem):
    problems = BridgeConfig(**changes).validate()
    assert any(problem in p for p in problems)


def test_file_status(tmp_path):
    wallet = tmp_path / "minter-wallet.json"
    wallet.write_text("{}")
    status = BridgeConfig(minter_wallet=str(wallet), output_dir=str(tmp_path)).file_status()
    assert status["minter_wallet"] is True
    assert status["state_file"] is False


def test_file_sink_writes_json(tmp_path):
    sink = FileArtifactSink(str(tmp_path / "out"))
    path = sink.write(token_file_name("abcd1234"), {"version": "2.0"})
    assert path.endswith("unicity-token-abcd1234.json")
    with open(path, encoding="utf-8") as f:
        assert json.load(f) == {"version": "2.0"}
    assert os.listdir(tmp_path / "out") == ["unicity-token-abcd1234.json"]


def test_s3_sink_uses_compliance_lock():
    client = FakeS3()
    sink = S3ObjectLockSink("bridge-artifacts", "tokens", retention_days=30, client=client)
    url = sink.write("unicity-token-abcd1234.json", {"version": "2.0"})
    assert url == "s3://bridge-artifacts/tokens/unicity-token-abcd1234.json"
    put = client.objects[0]
    assert put["ObjectLockMode"] == "COMPLIANCE"
    assert put["ObjectLockLegalHoldStatus"] == "OFF"
    assert json.loads(put["Body"]) == {"version": "2.0"}


def test_sink_factory(tmp_path):
    assert isinstance(get_artifact_sink(BridgeConfig(output_dir=str(tmp_path))), FileArtifactSink)
    s3 = get_artifact_sink(BridgeConfig(artifact_sink="s3_object_lock", s3_bucket="b"))
    assert isinstance(s3, S3ObjectLockSink)
    with pytest.raises(ValueError):
        get_artifact_sink(BridgeConfig(artifact_sink="s3_object_lock"))


def test_target_factory():
    assert isinstance(get_target_network("memory"), InMemoryTargetNetwork)
    assert isinstance(get_target_network("aggregator", "http://localhost:3000"), AggregatorClient)
    with pytest.raises(ValueError):
        get_target_network("carrier-pigeon")
