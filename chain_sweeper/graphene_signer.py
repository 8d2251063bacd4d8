"""
Graphene Transaction Signer

Builds, serializes and signs transactions for Graphene-family chains
(Hive, Steem, Blurt). Only the two operations the sweeper broadcasts are
supported:
- transfer (operation id 2)
- custom_json (operation id 18)

Signatures are compact, recoverable secp256k1 signatures over
sha256(chain_id || serialized transaction), retried with fresh nonce
entropy until canonical.
"""

import hashlib
import itertools
import json
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import base58
import ecdsa
from ecdsa.util import sigdecode_string, sigencode_string_canonize

from .errors import SigningError


OPERATION_IDS = {
    'transfer': 2,
    'custom_json': 18,
}

WIF_VERSION = 0x80
TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
MAX_SIGNING_ATTEMPTS = 256


def _varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _string(value: str) -> bytes:
    data = value.encode('utf-8')
    return _varint(len(data)) + data


def _string_set(values: Sequence[str]) -> bytes:
    items = sorted(set(values))
    return _varint(len(items)) + b''.join(_string(v) for v in items)


def _asset(amount: str, wire_symbols: Mapping[str, str]) -> bytes:
    """Serialize an asset string such as '119.999 HIVE'"""
    try:
        quantity, symbol = amount.split(' ')
        whole, _, fraction = quantity.partition('.')
        units = int(whole + fraction)
    except ValueError as e:
        raise SigningError(f"Cannot serialize asset {amount!r}: {e}") from e

    wire_symbol = wire_symbols.get(symbol, symbol).encode('ascii')
    if len(wire_symbol) > 7:
        raise SigningError(f"Asset symbol too long: {symbol}")

    return struct.pack('<qB', units, len(fraction)) + wire_symbol.ljust(7, b'\x00')


def serialize_operation(name: str, payload: Mapping[str, Any], wire_symbols: Mapping[str, str]) -> bytes:
    """Serialize one operation, including its variant id"""
    if name == 'transfer':
        body = (
            _string(payload['from'])
            + _string(payload['to'])
            + _asset(payload['amount'], wire_symbols)
            + _string(payload.get('memo', ''))
        )
    elif name == 'custom_json':
        body = (
            _string_set(payload.get('required_auths', []))
            + _string_set(payload.get('required_posting_auths', []))
            + _string(payload['id'])
            + _string(payload['json'])
        )
    else:
        raise SigningError(f"Unsupported operation: {name}")

    return _varint(OPERATION_IDS[name]) + body


def is_canonical(signature: bytes) -> bool:
    """Graphene canonical signature check over the 64-byte r||s form"""
    r, s = signature[:32], signature[32:]
    return (
        not (r[0] & 0x80)
        and not (r[0] == 0 and not (r[1] & 0x80))
        and not (s[0] & 0x80)
        and not (s[0] == 0 and not (s[1] & 0x80))
    )


class PrivateKey:
    """secp256k1 signing key decoded from a WIF string"""

    def __init__(self, wif: str):
        try:
            raw = base58.b58decode(wif.strip())
        except ValueError as e:
            raise SigningError(f"Invalid WIF key: {e}") from e

        if len(raw) != 37 or raw[0] != WIF_VERSION:
            raise SigningError("Invalid WIF key: unexpected length or version byte")

        checksum = hashlib.sha256(hashlib.sha256(raw[:33]).digest()).digest()[:4]
        if checksum != raw[33:]:
            raise SigningError("Invalid WIF key: checksum mismatch")

        self._key = ecdsa.SigningKey.from_string(raw[1:33], curve=ecdsa.SECP256k1)

    def __repr__(self):
        return "PrivateKey(<redacted>)"

    @staticmethod
    def encode_wif(secret: bytes) -> str:
        """Encode 32 raw secret bytes as WIF"""
        payload = bytes([WIF_VERSION]) + secret
        checksum = hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]
        return base58.b58encode(payload + checksum).decode('ascii')

    @property
    def public_key(self) -> bytes:
        """Compressed public key (33 bytes)"""
        return self._key.get_verifying_key().to_string('compressed')

    def sign_digest(self, digest: bytes) -> bytes:
        """
        Produce a 65-byte compact recoverable canonical signature

        Args:
            digest: 32-byte sha256 digest

        Returns:
            recovery byte (27 + 4 + recid) followed by r||s
        """
        for attempt in itertools.count():
            if attempt >= MAX_SIGNING_ATTEMPTS:
                raise SigningError("Could not produce a canonical signature")

            entropy = attempt.to_bytes(32, 'big') if attempt else b''
            signature = self._key.sign_digest_deterministic(
                digest,
                hashfunc=hashlib.sha256,
                sigencode=sigencode_string_canonize,
                extra_entropy=entropy,
            )
            if is_canonical(signature):
                break

        own = self._key.get_verifying_key().to_string()
        candidates = ecdsa.VerifyingKey.from_public_key_recovery_with_digest(
            signature,
            digest,
            ecdsa.SECP256k1,
            hashfunc=hashlib.sha256,
            sigdecode=sigdecode_string,
        )
        for recovery_id, candidate in enumerate(candidates):
            if candidate.to_string() == own:
                return bytes([27 + 4 + recovery_id]) + signature

        raise SigningError("Could not determine signature recovery id")


@dataclass
class Transaction:
    """Unsigned or signed Graphene transaction"""
    ref_block_num: int
    ref_block_prefix: int
    expiration: datetime
    operations: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)
    signatures: List[str] = field(default_factory=list)

    def serialize(self, wire_symbols: Optional[Mapping[str, str]] = None) -> bytes:
        wire_symbols = wire_symbols or {}
        expiration = self.expiration.replace(tzinfo=timezone.utc)
        data = struct.pack('<HII', self.ref_block_num, self.ref_block_prefix, int(expiration.timestamp()))
        data += _varint(len(self.operations))
        for name, payload in self.operations:
            data += serialize_operation(name, payload, wire_symbols)
        data += _varint(0)  # extensions
        return data

    def digest(self, chain_id: str, wire_symbols: Optional[Mapping[str, str]] = None) -> bytes:
        return hashlib.sha256(bytes.fromhex(chain_id) + self.serialize(wire_symbols)).digest()

    def sign(self, key: PrivateKey, chain_id: str, wire_symbols: Optional[Mapping[str, str]] = None) -> 'Transaction':
        self.signatures.append(key.sign_digest(self.digest(chain_id, wire_symbols)).hex())
        return self

    def to_json(self) -> Dict[str, Any]:
        """Wire format accepted by condenser_api.broadcast_transaction*"""
        return {
            'ref_block_num': self.ref_block_num,
            'ref_block_prefix': self.ref_block_prefix,
            'expiration': self.expiration.strftime(TIME_FORMAT),
            'operations': [[name, dict(payload)] for name, payload in self.operations],
            'extensions': [],
            'signatures': list(self.signatures),
        }


def reference_block(properties: Mapping[str, Any]) -> Tuple[int, int, datetime]:
    """
    Extract TaPoS reference fields from dynamic global properties

    Returns:
        Tuple of (ref_block_num, ref_block_prefix, head_block_time)
    """
    try:
        head_number = int(properties['head_block_number'])
        head_id = bytes.fromhex(properties['head_block_id'])
        head_time = datetime.strptime(properties['time'], TIME_FORMAT)
    except (KeyError, TypeError, ValueError) as e:
        raise SigningError(f"Invalid dynamic global properties: {e}") from e

    ref_block_prefix = struct.unpack_from('<I', head_id, 4)[0]
    return head_number & 0xFFFF, ref_block_prefix, head_time


def custom_json_payload(account: str, app_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
    """Active-authority custom_json payload carrying `body` as compact JSON"""
    return {
        'required_auths': [account],
        'required_posting_auths': [],
        'id': app_id,
        'json': json.dumps(body, separators=(',', ':')),
    }
