import time
from dataclasses import dataclass, replace
from typing import Optional

from credledger import crypto
from credledger.exceptions import InvalidArgument
from credledger.models.credential import CredentialRecord

ROOT_HASH = "0"


def now_millis() -> int:
    return int(time.time() * 1000)


def calculate_hash(height, timestamp, previous_hash, credential: CredentialRecord, validator_id) -> str:
    # field order is part of the on-chain format; changing it breaks every stored hash
    data = f"{height}{timestamp}{previous_hash}{credential.canonical()}{validator_id}"
    return crypto.sha256_hex(data)


@dataclass(frozen=True)
class BlockHeader:
    height: int
    timestamp: int
    previous_hash: str
    hash: str
    validator_id: str
    signature: Optional[str] = None

    @property
    def is_signed(self) -> bool:
        return bool(self.signature)


class Block:
    def __init__(self, height, previous_hash, credential, validator_id, signature=None, timestamp=None):
        if credential is None:
            raise InvalidArgument("credential is required")
        if not validator_id or not str(validator_id).strip():
            raise InvalidArgument("validator_id is required")
        if timestamp is None:
            timestamp = now_millis()
        block_hash = calculate_hash(height, timestamp, previous_hash, credential, validator_id)
        self._header = BlockHeader(height, timestamp, previous_hash, block_hash, validator_id, signature)
        self._credential = credential

    @classmethod
    def _from_parts(cls, header: BlockHeader, credential: CredentialRecord) -> "Block":
        block = cls.__new__(cls)
        block._header = header
        block._credential = credential
        return block

    @property
    def header(self) -> BlockHeader:
        return self._header

    @property
    def credential(self) -> CredentialRecord:
        return self._credential

    @property
    def height(self) -> int:
        return self._header.height

    @property
    def timestamp(self) -> int:
        return self._header.timestamp

    @property
    def previous_hash(self) -> str:
        return self._header.previous_hash

    @property
    def hash(self) -> str:
        return self._header.hash

    @property
    def validator_id(self) -> str:
        return self._header.validator_id

    @property
    def signature(self) -> Optional[str]:
        return self._header.signature

    def calculate_hash(self) -> str:
        h = self._header
        return calculate_hash(h.height, h.timestamp, h.previous_hash, self._credential, h.validator_id)

    def is_hash_valid(self) -> bool:
        return self._header.hash == self.calculate_hash()

    def attach_signature(self, signature: str) -> None:
        """Turn an unsigned block into a signed one. Allowed exactly once."""
        if not signature:
            raise InvalidArgument("signature is required")
        if self._header.is_signed:
            raise InvalidArgument(f"block {self.hash[:8]} is already signed")
        self._header = replace(self._header, signature=signature)

    def verify_signature(self, public_key) -> bool:
        if not public_key or not self.signature:
            return False
        # the signed message is the recomputed hash, so tampered fields fail here too
        return crypto.verify(self.calculate_hash(), self.signature, public_key)

    def is_linked_to(self, previous: Optional["Block"]) -> bool:
        if previous is None:
            return False
        return self.previous_hash == previous.hash

    def to_dict(self):
        return {
            'height': self.height,
            'timestamp': self.timestamp,
            'previous_hash': self.previous_hash,
            'hash': self.hash,
            'validator_id': self.validator_id,
            'signature': self.signature,
            'credential': self._credential.to_dict(),
        }

    @classmethod
    def from_dict(cls, data) -> "Block":
        """Rebuild a block exactly as stored, keeping the stored hash."""
        try:
            header = BlockHeader(
                height=int(data['height']),
                timestamp=int(data['timestamp']),
                previous_hash=data['previous_hash'],
                hash=data['hash'],
                validator_id=data['validator_id'],
                signature=data.get('signature'),
            )
            credential_data = data['credential']
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidArgument(f"malformed block data: {e}") from e
        return cls._from_parts(header, CredentialRecord.from_dict(credential_data))

    def __eq__(self, other):
        if not isinstance(other, Block):
            return NotImplemented
        return self._header == other._header and self._credential == other._credential

    def __repr__(self):
        return f"Block(height={self.height}, hash={self.hash[:8]}, validator={self.validator_id})"
