from dataclasses import dataclass, field, replace
from typing import Optional

from credledger import crypto
from credledger.exceptions import InvalidArgument, SigningError
from credledger.models.block import Block, now_millis
from credledger.models.vote import Vote


@dataclass(frozen=True)
class Validator:
    validator_id: str
    name: str
    institution: str
    public_key: bytes
    active: bool = True
    _private_key: Optional[object] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if not self.validator_id or not str(self.validator_id).strip():
            raise InvalidArgument("validator_id is required")
        if not self.public_key:
            raise InvalidArgument(f"validator {self.validator_id} has no public key")

    @classmethod
    def generate(cls, validator_id, name, institution, active=True) -> "Validator":
        """Create a validator with a fresh Ed25519 key pair."""
        private_key, public_key = crypto.generate_keypair()
        return cls(validator_id, name, institution, public_key, active, private_key)

    @classmethod
    def with_private_key(cls, validator_id, name, institution, private_key, active=True) -> "Validator":
        if not isinstance(private_key, crypto.Ed25519PrivateKey):
            private_key = crypto.load_private_key(private_key)
        return cls(validator_id, name, institution, crypto.public_key_bytes(private_key), active, private_key)

    @property
    def can_sign(self) -> bool:
        return self._private_key is not None

    def public_view(self) -> "Validator":
        return replace(self, _private_key=None)

    def sign(self, message) -> str:
        if self._private_key is None:
            raise SigningError(f"validator {self.validator_id} holds no private key")
        return crypto.sign(message, self._private_key)

    def sign_block(self, block: Block) -> Block:
        if block.validator_id != self.validator_id:
            raise SigningError(f"{self.validator_id} cannot sign a block proposed by {block.validator_id}")
        block.attach_signature(self.sign(block.hash))
        return block

    def create_vote(self, height: int, block_hash: str, approve: bool) -> Vote:
        vote = Vote(
            height=height,
            block_hash=block_hash,
            voter_id=self.validator_id,
            public_key=self.public_key,
            approve=approve,
            timestamp=now_millis(),
        )
        return vote.signed(self.sign(vote.get_bytes()))
