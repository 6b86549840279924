import threading
from typing import Optional

import structlog

from credledger.consensus import ConsensusEngine
from credledger.exceptions import InvalidArgument
from credledger.models.block import Block, now_millis
from credledger.models.blockchain import Blockchain
from credledger.models.credential import CredentialRecord
from credledger.models.validator import Validator
from credledger.models.vote import Vote
from credledger.registry import ValidatorRegistry

logger = structlog.get_logger(__name__)


class Broadcaster:
    """Outbound hook to the transport layer. The default drops everything."""

    def broadcast_block(self, block: Block) -> None:
        pass

    def broadcast_vote(self, vote: Vote) -> None:
        pass


class ValidatorNode:
    """One authority's view of the network: its key, its chain, its engine."""

    def __init__(self, validator: Validator, registry: ValidatorRegistry,
                 chain: Optional[Blockchain] = None, broadcaster: Optional[Broadcaster] = None,
                 engine: Optional[ConsensusEngine] = None):
        if not validator.can_sign:
            raise InvalidArgument(f"validator {validator.validator_id} needs its private key to run a node")
        if validator.validator_id not in registry:
            raise InvalidArgument(f"validator {validator.validator_id} is not in the registry")
        self.validator = validator
        self.registry = registry
        self.chain = chain if chain is not None else Blockchain()
        self.engine = engine if engine is not None else ConsensusEngine(registry)
        self.broadcaster = broadcaster if broadcaster is not None else Broadcaster()
        self.node_id = validator.validator_id
        self.log = logger.bind(node=self.node_id)
        self._finalize_lock = threading.Lock()

    def issue_credential(self, credential: CredentialRecord) -> Block:
        if credential is None:
            raise InvalidArgument("credential is required")
        if self._is_duplicate(credential):
            raise InvalidArgument(f"credential {credential.credential_id} is already on the chain")

        tip = self.chain.latest_block()
        timestamp = max(now_millis(), tip.timestamp)
        block = Block(tip.height + 1, tip.hash, credential, self.node_id, timestamp=timestamp)
        self.validator.sign_block(block)

        if not self.engine.propose(block):
            self.log.warning("own_proposal_rejected", height=block.height)
            return block
        self.log.info("block_issued", height=block.height, hash=block.hash[:8], student=credential.student_id)
        self.broadcaster.broadcast_block(block)
        return block

    def _is_duplicate(self, credential: CredentialRecord) -> bool:
        return credential.credential_id is not None and \
            self.chain.find_by_credential_id(credential.credential_id) is not None

    def on_block_received(self, block: Block) -> bool:
        if block is None:
            raise InvalidArgument("block is required")
        if not self.engine.propose(block):
            self.log.info("received_block_dropped", height=block.height, hash=block.hash[:8])
            return False

        tip = self.chain.latest_block()
        approve = self.engine.enforce_rules(block, tip) and not self._is_duplicate(block.credential)
        if block.validator_id == self.node_id:
            return True

        vote = self.validator.create_vote(block.height, block.hash, approve)
        self.engine.vote(vote.height, vote.block_hash, vote.public_key, vote.approve)
        self.log.info("vote_cast", height=block.height, hash=block.hash[:8], decision=vote.decision)
        self.broadcaster.broadcast_vote(vote)
        return True

    def on_vote_received(self, vote: Vote) -> bool:
        if vote is None:
            raise InvalidArgument("vote is required")
        voter = self.registry.by_id(vote.voter_id)
        if voter is None or voter.public_key != vote.public_key:
            self.log.info("vote_dropped", reason="voter key mismatch", voter=vote.voter_id)
            return False
        if not vote.verify(voter.public_key):
            self.log.info("vote_dropped", reason="bad vote signature", voter=vote.voter_id)
            return False
        return self.engine.vote(vote.height, vote.block_hash, vote.public_key, vote.approve)

    def try_finalize(self, height: int) -> Optional[Block]:
        with self._finalize_lock:
            block = self.engine.get_consensus_block(height)
            if block is None:
                return None
            previous = self.chain.get_block(height - 1) if height > 0 else None
            if previous is None or previous.hash != self.chain.latest_block().hash:
                self.log.info("finalize_deferred", height=height, tip=self.chain.height)
                return None
            if not self.engine.should_accept(block, previous):
                return None
            if not self.chain.append_if_tip(block, previous.hash):
                self.log.info("finalize_deferred", height=height, tip=self.chain.height)
                return None
            self.engine.clear_pending(height)
        self.log.info("block_finalized", height=height, hash=block.hash[:8])
        return block

    def load_chain(self, block_dicts) -> bool:
        """Replace the local chain with a stored one, if it validates."""
        candidate = Blockchain.from_dicts(block_dicts)
        if not candidate.validate(self.registry):
            self.log.warning("stored_chain_rejected", length=len(candidate))
            return False
        self.chain = candidate
        self.log.info("chain_loaded", height=self.chain.height)
        return True

    def export_chain(self):
        return self.chain.to_dicts()
