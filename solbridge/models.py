from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class VerifyRequest(BaseModel):
    artifact: Dict[str, Any]
    offline: bool = False


class CheckModel(BaseModel):
    check: str
    status: str
    message: str


class VerifyResponse(BaseModel):
    assetId: Optional[str] = None
    verdict: str
    checks: List[CheckModel] = Field(default_factory=list)


class CommitmentRequest(BaseModel):
    proof: Dict[str, Any]
    minterAddress: Optional[str] = None
    programId: Optional[str] = None


class CommitmentResponse(BaseModel):
    commitment: str
    commitmentDigest: str
    assetClassId: str
    salt: str
    recipient: str
    validationStatus: str
    minterAuthorized: Optional[bool] = None


class ReplayStateResponse(BaseModel):
    processedTransactions: List[str]
    lastCheckedHeight: int
    savedAt: str
    count: int
