# src/mintlock/pipeline/metadata.py
from __future__ import annotations

import logging
from typing import Optional

from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import AccountNotFound, AccountOwnerMismatch, InvalidConfig, MetadataAlreadyExists
from mintlock.ledger.client import LedgerClient, read_metadata
from mintlock.ledger.derive import metadata_address
from mintlock.ledger.instructions import create_metadata_account_v3, update_metadata_account_v2
from mintlock.ledger.layouts import MetadataRecord
from mintlock.pipeline.submit import submit_or_reconcile

log = logging.getLogger("mintlock.pipeline.metadata")


def _same(record: MetadataRecord, name: str, symbol: str, uri: str, update_authority: Pubkey) -> bool:
    return (
        record.name == name
        and record.symbol == symbol
        and record.uri == uri
        and record.update_authority == update_authority
    )


def _build(builder, **kwargs):
    try:
        return builder(**kwargs)
    except ValueError as e:
        raise InvalidConfig("invalid_config", "metadata_field_too_long", {"error": str(e)}) from e


def attach_metadata(
    ledger: LedgerClient,
    payer: Keypair,
    mint: Pubkey,
    *,
    name: str,
    symbol: str,
    uri: str,
    update_authority: Optional[Pubkey] = None,
) -> bool:
    """Create the metadata record once. Returns False when an identical one exists.

    The payer must still hold the mint authority.
    """
    authority = update_authority or payer.pubkey
    existing = read_metadata(ledger, mint)
    if existing is not None:
        if _same(existing, name, symbol, uri, authority):
            return False
        raise MetadataAlreadyExists(
            "metadata_exists",
            "metadata_differs",
            {
                "mint": str(mint),
                "metadata": str(metadata_address(mint)),
                "existing": {"name": existing.name, "symbol": existing.symbol, "uri": existing.uri},
            },
        )

    ix = _build(
        create_metadata_account_v3,
        mint=mint,
        mint_authority=payer.pubkey,
        payer=payer.pubkey,
        update_authority=authority,
        name=name,
        symbol=symbol,
        uri=uri,
    )

    def landed() -> bool:
        rec = read_metadata(ledger, mint)
        return rec is not None and _same(rec, name, symbol, uri, authority)

    submit_or_reconcile(ledger, [ix], [payer], landed=landed, logger=log, action="create_metadata", mint=str(mint))
    return True


def update_metadata(
    ledger: LedgerClient,
    authority: Keypair,
    mint: Pubkey,
    *,
    name: str,
    symbol: str,
    uri: str,
    new_update_authority: Optional[Pubkey] = None,
) -> MetadataRecord:
    """Rewrite name, symbol and uri of an existing record. No-op when unchanged."""
    existing = read_metadata(ledger, mint)
    if existing is None:
        raise AccountNotFound("not_found", "metadata_not_found", {"mint": str(mint), "metadata": str(metadata_address(mint))})
    if existing.update_authority != authority.pubkey:
        raise AccountOwnerMismatch(
            "owner_mismatch",
            "not_update_authority",
            {"mint": str(mint), "update_authority": str(existing.update_authority), "signer": str(authority.pubkey)},
        )

    target_authority = new_update_authority or existing.update_authority
    if _same(existing, name, symbol, uri, target_authority):
        return existing

    ix = _build(
        update_metadata_account_v2,
        mint=mint,
        update_authority=authority.pubkey,
        new_update_authority=target_authority,
        name=name,
        symbol=symbol,
        uri=uri,
    )

    def landed() -> bool:
        rec = read_metadata(ledger, mint)
        return rec is not None and _same(rec, name, symbol, uri, target_authority)

    submit_or_reconcile(ledger, [ix], [authority], landed=landed, logger=log, action="update_metadata", mint=str(mint))
    updated = read_metadata(ledger, mint)
    assert updated is not None
    return updated
