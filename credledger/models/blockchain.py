import threading
from datetime import date
from typing import Iterable, List, Mapping, Optional

import structlog

from credledger.exceptions import InvalidArgument
from credledger.models.block import ROOT_HASH, Block
from credledger.models.credential import CredentialRecord

logger = structlog.get_logger(__name__)

GENESIS_VALIDATOR_ID = "genesis"
GENESIS_TIMESTAMP = 0
GENESIS_CREDENTIAL = CredentialRecord(
    student_name="Genesis",
    student_id="1000000000009",
    degree="Genesis Block",
    institution="credledger",
    date_awarded=date(1970, 1, 1),
    credential_id="genesis",
)


def create_genesis_block() -> Block:
    return Block(0, ROOT_HASH, GENESIS_CREDENTIAL, GENESIS_VALIDATOR_ID, timestamp=GENESIS_TIMESTAMP)


class Blockchain:
    """Ordered list of finalized blocks, starting from the canonical genesis.

    ``append`` trusts its caller: blocks reach it only after the consensus
    engine has accepted them. ``validate`` re-checks the whole sequence.
    """

    def __init__(self, blocks: Optional[Iterable[Block]] = None):
        self._lock = threading.RLock()
        self.chain: List[Block] = list(blocks) if blocks is not None else []
        if not self.chain:
            self.chain.append(create_genesis_block())

    @classmethod
    def from_dicts(cls, block_dicts) -> "Blockchain":
        return cls(Block.from_dict(d) for d in block_dicts)

    def to_dicts(self):
        with self._lock:
            return [block.to_dict() for block in self.chain]

    def append(self, block: Block) -> None:
        if block is None:
            raise InvalidArgument("block is required")
        with self._lock:
            self.chain.append(block)
        logger.info("block_appended", height=block.height, hash=block.hash[:8], validator=block.validator_id)

    def append_if_tip(self, block: Block, expected_previous_hash: str) -> bool:
        """Append ``block`` only while the tip still has ``expected_previous_hash``."""
        if block is None:
            raise InvalidArgument("block is required")
        with self._lock:
            if self.chain[-1].hash != expected_previous_hash:
                return False
            self.chain.append(block)
        logger.info("block_appended", height=block.height, hash=block.hash[:8], validator=block.validator_id)
        return True

    @property
    def height(self) -> int:
        with self._lock:
            return self.chain[-1].height

    def latest_block(self) -> Block:
        with self._lock:
            return self.chain[-1]

    def get_block(self, height: int) -> Optional[Block]:
        with self._lock:
            if 0 <= height < len(self.chain) and self.chain[height].height == height:
                return self.chain[height]
            for block in self.chain:
                if block.height == height:
                    return block
        return None

    def search(self, student_id: str) -> List[Block]:
        if not student_id or not student_id.strip():
            return []
        with self._lock:
            return [b for b in self.chain if b.credential.student_id == student_id]

    def find_by_credential_id(self, credential_id: str) -> Optional[Block]:
        if not credential_id:
            return None
        with self._lock:
            for block in self.chain:
                if block.credential.credential_id == credential_id:
                    return block
        return None

    def validate(self, public_keys) -> bool:
        """Check the entire chain against ``public_keys``.

        ``public_keys`` maps validator id to public key, or is a
        ``ValidatorRegistry``. A proposer with no key on record fails the
        chain.
        """
        if public_keys is None:
            raise InvalidArgument("public key snapshot is required")
        if not isinstance(public_keys, Mapping):
            public_keys = public_keys.public_keys()

        with self._lock:
            blocks = list(self.chain)

        reason = self._genesis_violation(blocks[0]) if blocks else "empty chain"
        if reason:
            logger.warning("chain_invalid", height=0, reason=reason)
            return False

        for previous, current in zip(blocks, blocks[1:]):
            reason = self._pair_violation(previous, current, public_keys)
            if reason:
                logger.warning("chain_invalid", height=current.height, reason=reason)
                return False
        return True

    @staticmethod
    def _genesis_violation(block: Block) -> Optional[str]:
        if block.height != 0:
            return "genesis height is not 0"
        if block.previous_hash != ROOT_HASH:
            return "genesis does not point at the root marker"
        if not block.is_hash_valid():
            return "genesis hash mismatch"
        if block.hash != create_genesis_block().hash:
            return "genesis is not the canonical genesis block"
        return None

    @staticmethod
    def _pair_violation(previous: Block, current: Block, public_keys: Mapping) -> Optional[str]:
        if current.height != previous.height + 1:
            return f"height gap {previous.height} -> {current.height}"
        if not current.is_linked_to(previous):
            return "previous hash does not match"
        if not current.is_hash_valid():
            return "hash mismatch"
        if current.timestamp < previous.timestamp:
            return "timestamp went backwards"
        public_key = public_keys.get(current.validator_id)
        if not public_key:
            return f"no public key on record for {current.validator_id}"
        if not current.verify_signature(public_key):
            return "signature does not verify"
        return None

    def __len__(self):
        with self._lock:
            return len(self.chain)

    def __iter__(self):
        with self._lock:
            return iter(list(self.chain))
