"""
Caller authorization.

The core only ever sees a ``Proof``: a statement from the host that the
caller controls an identity. ``require_identity`` is the gate every
mutating operation passes through.

``AuthorizationVerifier`` is the host-side substrate used by the CLI. It
turns an EIP-712 signed authorization into a ``Proof`` after checking the
signature, the bound operation and arguments, expiry, and nonce reuse.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_checksum_address

from .errors import InvalidAddressError, UnauthorizedError
from .storage import KeyValueStore


DEFAULT_CHAIN_ID = 8453
AUTHORIZATION_TTL_SECONDS = 300

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def normalize_address(address: str) -> str:
    """Validate an EVM address and return its checksum form."""
    if not isinstance(address, str):
        raise InvalidAddressError(f"Invalid address: {address!r}")
    candidate = address.strip()
    if candidate.startswith("0X"):
        candidate = "0x" + candidate[2:]
    if not _ADDRESS_RE.match(candidate):
        raise InvalidAddressError(f"Invalid address: {address}")
    return to_checksum_address(candidate)


@dataclass(frozen=True)
class Proof:
    """The caller has proven control of ``identity``."""

    identity: str


def require_identity(proof: Optional[Proof], expected: str) -> None:
    """Raise ``UnauthorizedError`` unless ``proof`` is for ``expected``."""
    if proof is None:
        raise UnauthorizedError(expected, None)
    try:
        actual = normalize_address(proof.identity)
    except InvalidAddressError:
        raise UnauthorizedError(expected, proof.identity) from None
    if actual != normalize_address(expected):
        raise UnauthorizedError(expected, actual)


@dataclass
class SignedAuthorization:
    """An EIP-712 signed request to perform one operation."""

    caller: str
    operation: str
    args: dict[str, Any]
    nonce: int
    expires_at: int
    chain_id: int
    signature: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> SignedAuthorization:
        return cls(**dict(d))


def args_hash(args: Mapping[str, Any]) -> str:
    canonical = json.dumps(dict(args), sort_keys=True, separators=(",", ":"))
    return "0x" + keccak(canonical.encode("utf-8")).hex()


def _typed_data(
    caller: str,
    operation: str,
    args: Mapping[str, Any],
    nonce: int,
    expires_at: int,
    chain_id: int,
) -> dict:
    return {
        "types": {
            "Authorization": [
                {"name": "caller", "type": "address"},
                {"name": "operation", "type": "string"},
                {"name": "argsHash", "type": "bytes32"},
                {"name": "nonce", "type": "uint256"},
                {"name": "expiresAt", "type": "uint256"},
            ],
        },
        "primaryType": "Authorization",
        "domain": {
            "name": "SwiftRemit",
            "version": "1",
            "chainId": chain_id,
        },
        "message": {
            "caller": caller,
            "operation": operation,
            "argsHash": args_hash(args),
            "nonce": nonce,
            "expiresAt": expires_at,
        },
    }


def sign_authorization(
    private_key: str,
    operation: str,
    args: Mapping[str, Any],
    nonce: Optional[int] = None,
    ttl_seconds: int = AUTHORIZATION_TTL_SECONDS,
    chain_id: int = DEFAULT_CHAIN_ID,
) -> SignedAuthorization:
    """Sign an authorization for ``operation`` with ``args``."""
    account = Account.from_key(private_key)
    now = int(time.time())
    nonce = nonce if nonce is not None else time.time_ns()
    expires_at = now + ttl_seconds
    typed_data = _typed_data(account.address, operation, args, nonce, expires_at, chain_id)
    signed = Account.sign_typed_data(
        account.key,
        typed_data["domain"],
        typed_data["types"],
        typed_data["message"],
    )
    return SignedAuthorization(
        caller=account.address,
        operation=operation,
        args=dict(args),
        nonce=nonce,
        expires_at=expires_at,
        chain_id=chain_id,
        signature=signed.signature.hex(),
    )


class AuthorizationVerifier:
    """Host-side verifier producing ``Proof`` objects from signed requests.

    Used nonces are recorded in the keyed store so a signed request can
    only be redeemed once.
    """

    def __init__(self, store: KeyValueStore, chain_id: int = DEFAULT_CHAIN_ID):
        self.store = store
        self.chain_id = chain_id

    def _nonce_key(self, caller: str, nonce: int) -> str:
        return f"auth_nonce:{caller}:{nonce}"

    def verify(
        self,
        auth: SignedAuthorization,
        operation: str,
        args: Mapping[str, Any],
        now: Optional[int] = None,
    ) -> Proof:
        now = int(time.time()) if now is None else now
        caller = normalize_address(auth.caller)
        if auth.operation != operation:
            raise UnauthorizedError(caller, None, reason=f"signed for operation {auth.operation}")
        if args_hash(auth.args) != args_hash(args):
            raise UnauthorizedError(caller, None, reason="signed for different arguments")
        if auth.chain_id != self.chain_id:
            raise UnauthorizedError(caller, None, reason=f"signed for chain {auth.chain_id}")
        if now >= auth.expires_at:
            raise UnauthorizedError(caller, None, reason="authorization expired")
        if self.store.get(self._nonce_key(caller, auth.nonce)) is not None:
            raise UnauthorizedError(caller, None, reason="nonce already used")

        typed_data = _typed_data(caller, auth.operation, auth.args, auth.nonce, auth.expires_at, auth.chain_id)
        try:
            signable = encode_typed_data(
                typed_data["domain"],
                typed_data["types"],
                typed_data["message"],
            )
            recovered = Account.recover_message(
                signable,
                signature=bytes.fromhex(_strip_0x(auth.signature)),
            )
        except Exception as e:
            raise UnauthorizedError(caller, None, reason=f"signature verification failed: {e}") from e

        if normalize_address(recovered) != caller:
            raise UnauthorizedError(caller, recovered)

        self.store.set(self._nonce_key(caller, auth.nonce), now)
        return Proof(identity=caller)


def _strip_0x(value: str) -> str:
    return value[2:] if value.lower().startswith("0x") else value
