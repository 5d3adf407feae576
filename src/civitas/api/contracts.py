"""FastAPI router for clone lookups and on-demand resync."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from eth_utils import is_hex_address
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from civitas.chain.abis import ContractKind
from civitas.errors import ChainRPCError, UnknownContractKindError
from civitas.indexer.synchronizer import ContractSynchronizer
from civitas.services.factories import build_session_factory, build_synchronizer, build_transaction_store
from civitas.store.transaction_store import ClonedContract, NormalizedTransaction, TransactionStore

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/contracts", tags=["contracts"])


class SyncRequest(BaseModel):
    kind: Optional[str] = None


@lru_cache(maxsize=1)
def get_store() -> TransactionStore:
    return build_transaction_store(session_factory=build_session_factory())


@lru_cache(maxsize=1)
def get_synchronizer() -> ContractSynchronizer:
    return build_synchronizer(store=get_store())


def _validated_address(address: str) -> str:
    if not is_hex_address(address):
        raise HTTPException(status_code=400, detail=f"Invalid contract address '{address}'")
    return address.lower()


def _contract_to_dict(contract: ClonedContract) -> Dict[str, Any]:
    return {
        "address": contract.address,
        "kind": contract.kind,
        "creator": contract.creator,
        "creation_block": contract.creation_block,
        "creation_tx_hash": contract.creation_tx_hash,
        "config": contract.config,
        "chain_id": contract.chain_id,
        "label": contract.label,
        "created_at": contract.created_at.isoformat() if contract.created_at else None,
        "updated_at": contract.updated_at.isoformat() if contract.updated_at else None,
    }


def _transaction_to_dict(record: NormalizedTransaction) -> Dict[str, Any]:
    return {
        "tx_hash": record.tx_hash,
        "log_index": record.log_index,
        "contract_address": record.contract_address,
        "kind": record.kind,
        "transaction_type": record.transaction_type,
        "payload": record.payload,
        "block_number": record.block_number,
        "block_timestamp": record.block_timestamp.isoformat() if record.block_timestamp else None,
        "initiator": record.initiator,
        "amount": str(record.amount) if record.amount is not None else None,
        "chain_id": record.chain_id,
        "indexed_at": record.indexed_at.isoformat() if record.indexed_at else None,
    }


@router.post("/{address}/sync", summary="Resync a contract's recent event history")
def sync_contract(
    address: str,
    payload: Optional[SyncRequest] = None,
    store: TransactionStore = Depends(get_store),
    synchronizer: ContractSynchronizer = Depends(get_synchronizer),
):
    address = _validated_address(address)
    requested_kind = payload.kind if payload else None
    if requested_kind:
        try:
            kind = ContractKind.parse(requested_kind)
        except UnknownContractKindError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    else:
        contract = store.get_cloned_contract(address)
        if contract is None:
            raise HTTPException(status_code=404, detail=f"Contract {address} is not registered; supply a kind")
        kind = ContractKind.parse(contract.kind)

    try:
        result = synchronizer.sync(address, kind)
    except ChainRPCError as exc:
        LOGGER.error("Resync of %s failed on RPC: %s", address, exc)
        raise HTTPException(status_code=502, detail=f"Chain RPC failure: {exc}") from exc
    return result.as_dict()


@router.get("/{address}", summary="Fetch a registered clone")
def get_contract(address: str, store: TransactionStore = Depends(get_store)):
    contract = store.get_cloned_contract(_validated_address(address))
    if contract is None:
        raise HTTPException(status_code=404, detail="Contract not found")
    return _contract_to_dict(contract)


@router.get("/{address}/transactions", summary="List normalized transactions for a clone")
def list_contract_transactions(
    address: str,
    limit: int = Query(default=100, ge=1, le=1000),
    store: TransactionStore = Depends(get_store),
):
    address = _validated_address(address)
    records = store.list_transactions(address, limit=limit)
    return {"address": address, "count": len(records), "items": [_transaction_to_dict(item) for item in records]}


__all__ = ["router", "get_store", "get_synchronizer"]
