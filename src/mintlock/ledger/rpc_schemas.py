"""Pydantic models for the JSON-RPC responses the client consumes.

Only the fields the client reads are declared; anything else the node sends
is ignored (forward compatible).
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class RpcError(BaseModel):
    code: int = Field(..., description="JSON-RPC error code")
    message: str = Field(default="", description="Human readable message")
    data: Optional[Any] = Field(default=None, description="Node-specific payload")

    model_config = {"extra": "allow"}


class RpcEnvelope(BaseModel):
    jsonrpc: str = Field(default="2.0")
    id: Optional[Any] = Field(default=None)
    result: Optional[Any] = Field(default=None)
    error: Optional[RpcError] = Field(default=None)

    model_config = {"extra": "allow"}


class RpcContext(BaseModel):
    slot: int = Field(default=0)

    model_config = {"extra": "allow"}


class AccountInfoValue(BaseModel):
    lamports: int = Field(..., ge=0)
    owner: str = Field(..., description="Base58 owner program id")
    # ["<base64 data>", "base64"]
    data: List[str] = Field(..., min_length=2, max_length=2)
    executable: bool = Field(default=False)

    model_config = {"extra": "allow"}


class AccountInfoResult(BaseModel):
    context: RpcContext = Field(default_factory=RpcContext)
    value: Optional[AccountInfoValue] = Field(default=None)

    model_config = {"extra": "allow"}


class BalanceResult(BaseModel):
    context: RpcContext = Field(default_factory=RpcContext)
    value: int = Field(..., ge=0)

    model_config = {"extra": "allow"}


class BlockhashValue(BaseModel):
    blockhash: str
    lastValidBlockHeight: int = Field(default=0)

    model_config = {"extra": "allow"}


class BlockhashResult(BaseModel):
    context: RpcContext = Field(default_factory=RpcContext)
    value: BlockhashValue

    model_config = {"extra": "allow"}


class SignatureStatus(BaseModel):
    slot: int = Field(default=0)
    confirmations: Optional[int] = Field(default=None)
    err: Optional[Any] = Field(default=None)
    confirmationStatus: Optional[str] = Field(default=None)

    model_config = {"extra": "allow"}


class SignatureStatusesResult(BaseModel):
    context: RpcContext = Field(default_factory=RpcContext)
    value: List[Optional[SignatureStatus]] = Field(default_factory=list)

    model_config = {"extra": "allow"}
