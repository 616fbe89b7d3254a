# src/mintlock/ledger/wire.py
"""Legacy transaction wire format.

Message layout:
  header (3 bytes) | compact(len) account keys | recent blockhash (32) |
  compact(len) instructions [program index, compact(len) account indexes,
  compact(len) data]

Transaction layout: compact(len) signatures (64 bytes each) | message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.ledger.instructions import Instruction

SIGNATURE_LEN = 64
PACKET_DATA_SIZE = 1232


def encode_compact_u16(n: int) -> bytes:
    if n < 0 or n > 0xFFFF:
        raise ValueError(f"compact-u16 out of range: {n}")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def decode_compact_u16(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Return (value, new_offset)."""
    value = 0
    for i in range(3):
        b = data[offset + i]
        value |= (b & 0x7F) << (7 * i)
        if not b & 0x80:
            return value, offset + i + 1
    raise ValueError("compact-u16 longer than 3 bytes")


@dataclass(frozen=True)
class CompiledMessage:
    num_required_signatures: int
    num_readonly_signed: int
    num_readonly_unsigned: int
    account_keys: Tuple[Pubkey, ...]
    recent_blockhash: bytes
    instructions: Tuple[Tuple[int, Tuple[int, ...], bytes], ...]

    def serialize(self) -> bytes:
        out = bytearray([self.num_required_signatures, self.num_readonly_signed, self.num_readonly_unsigned])
        out += encode_compact_u16(len(self.account_keys))
        for k in self.account_keys:
            out += k.raw
        out += self.recent_blockhash
        out += encode_compact_u16(len(self.instructions))
        for program_index, indexes, data in self.instructions:
            out.append(program_index)
            out += encode_compact_u16(len(indexes))
            out += bytes(indexes)
            out += encode_compact_u16(len(data))
            out += data
        return bytes(out)


def compile_message(instructions: Sequence[Instruction], fee_payer: Pubkey, recent_blockhash: bytes) -> CompiledMessage:
    if len(recent_blockhash) != 32:
        raise ValueError("recent blockhash must be 32 bytes")

    # Merge flags per key, first-seen order, fee payer always first.
    order: List[Pubkey] = [fee_payer]
    signer: Dict[Pubkey, bool] = {fee_payer: True}
    writable: Dict[Pubkey, bool] = {fee_payer: True}
    for ix in instructions:
        for m in ix.accounts:
            if m.pubkey not in signer:
                order.append(m.pubkey)
                signer[m.pubkey] = False
                writable[m.pubkey] = False
            signer[m.pubkey] = signer[m.pubkey] or m.is_signer
            writable[m.pubkey] = writable[m.pubkey] or m.is_writable
        if ix.program_id not in signer:
            order.append(ix.program_id)
            signer[ix.program_id] = False
            writable[ix.program_id] = False

    def bucket(k: Pubkey) -> int:
        if k == fee_payer:
            return -1
        if signer[k]:
            return 0 if writable[k] else 1
        return 2 if writable[k] else 3

    keys = sorted(order, key=lambda k: bucket(k))  # stable: keeps first-seen order within a bucket
    index = {k: i for i, k in enumerate(keys)}

    compiled = tuple(
        (index[ix.program_id], tuple(index[m.pubkey] for m in ix.accounts), bytes(ix.data)) for ix in instructions
    )
    return CompiledMessage(
        num_required_signatures=sum(1 for k in keys if signer[k]),
        num_readonly_signed=sum(1 for k in keys if signer[k] and not writable[k]),
        num_readonly_unsigned=sum(1 for k in keys if not signer[k] and not writable[k]),
        account_keys=tuple(keys),
        recent_blockhash=bytes(recent_blockhash),
        instructions=compiled,
    )


def sign_transaction(message: CompiledMessage, signers: Sequence[Keypair]) -> Tuple[bytes, List[bytes]]:
    """Return (wire bytes, signatures in key order). Every required signer must be present."""
    by_key = {kp.pubkey: kp for kp in signers}
    msg = message.serialize()
    sigs: List[bytes] = []
    for k in message.account_keys[: message.num_required_signatures]:
        kp = by_key.get(k)
        if kp is None:
            raise ValueError(f"missing signer for {k}")
        sigs.append(kp.sign(msg))
    wire = encode_compact_u16(len(sigs)) + b"".join(sigs) + msg
    if len(wire) > PACKET_DATA_SIZE:
        raise ValueError(f"transaction too large: {len(wire)} > {PACKET_DATA_SIZE}")
    return wire, sigs
