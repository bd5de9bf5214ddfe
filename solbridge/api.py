"""
HTTP verification service.

Read-only endpoints over the same verification code the CLI uses:
    GET  /health        service and configuration summary
    POST /verify        verify a minted token artifact
    POST /commitment    derive the public commitment fields of a validated proof
    GET  /replay-state  processed-transaction state written by the monitor
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request

from . import __version__
from .config import BridgeConfig
from .errors import InvalidEventStructure
from .identity import commitment_digest, commitment_for_proof, derive_asset_class_id, derive_salt
from .models import (
    CommitmentRequest,
    CommitmentResponse,
    ReplayStateResponse,
    VerifyRequest,
    VerifyResponse,
)
from .replay import JsonFileReplayGuard
from .rpc import OriginRpc, SolanaRpcClient
from .validator import ValidatedProof
from .verifier import TokenVerifier

logger = logging.getLogger(__name__)


def create_app(config: Optional[BridgeConfig] = None, rpc: Optional[OriginRpc] = None) -> FastAPI:
    config = config or BridgeConfig.from_env()
    app = FastAPI(title="solbridge verification service", version=__version__)
    app.state.config = config
    app.state.rpc = rpc or SolanaRpcClient(config.rpc_url, timeout=config.rpc_timeout)

    @app.on_event("startup")
    def _startup():
        logger.info("Verification service for program %s via %s", config.program_id, config.rpc_url)

    @app.get("/health")
    def health(request: Request):
        cfg = request.app.state.config
        return {
            "status": "ok",
            "version": __version__,
            "programId": cfg.program_id,
            "rpcUrl": cfg.rpc_url,
            "cluster": cfg.cluster,
        }

    @app.post("/verify", response_model=VerifyResponse)
    def verify(req: VerifyRequest, request: Request):
        state = request.app.state
        verifier = TokenVerifier(
            rpc=None if req.offline else state.rpc,
            program_id=state.config.program_id,
        )
        return verifier.verify(req.artifact).to_dict()

    @app.post("/commitment", response_model=CommitmentResponse)
    def commitment(req: CommitmentRequest, request: Request):
        try:
            proof = ValidatedProof.from_dict(req.proof)
        except InvalidEventStructure as e:
            raise HTTPException(400, e.to_dict())
        program_id = req.programId or request.app.state.config.program_id
        value = commitment_for_proof(proof)
        result = {
            "commitment": value,
            "commitmentDigest": commitment_digest(value).hex(),
            "assetClassId": derive_asset_class_id(program_id),
            "salt": derive_salt(value),
            "recipient": proof.event.target_recipient,
            "validationStatus": proof.status.value,
        }
        if req.minterAddress is not None:
            result["minterAuthorized"] = req.minterAddress == proof.event.target_recipient
        return result

    @app.get("/replay-state", response_model=ReplayStateResponse)
    def replay_state(request: Request):
        # re-read on every request; the monitor owns the file
        guard = JsonFileReplayGuard(request.app.state.config.state_file)
        guard.load()
        snapshot = guard.snapshot()
        snapshot["count"] = len(guard)
        return snapshot

    return app


app = create_app()
