"""Proof-of-Authority consensus over per-height candidate blocks.

Validators propose signed blocks for a height; each proposal counts as the
proposer's approval. Other validators vote on a specific candidate. The first
candidate (in arrival order) whose approvals reach the registry's majority
threshold is the consensus block for that height. Once the caller appends it
to the chain, ``clear_pending`` drops everything held for that height.

Rule violations and unauthorized callers are ordinary outcomes and come back
as ``False``/``None``. Only malformed calls (missing required arguments)
raise ``InvalidArgument``.
"""

import threading
from typing import Callable, Dict, List, Optional

import structlog

from credledger.exceptions import InvalidArgument
from credledger.models.block import Block
from credledger.registry import ValidatorRegistry

logger = structlog.get_logger(__name__)

EventHook = Callable[[str, dict], None]


class ConsensusEngine:
    def __init__(self, registry: ValidatorRegistry, event_hook: Optional[EventHook] = None):
        if registry is None:
            raise InvalidArgument("registry is required")
        self.registry = registry
        self.event_hook = event_hook
        self._lock = threading.RLock()
        # height -> {block hash -> block}, in arrival order
        self._candidates: Dict[int, Dict[str, Block]] = {}
        # height -> {block hash -> {validator id -> approve}}
        self._votes: Dict[int, Dict[str, Dict[str, bool]]] = {}

    def _emit(self, event: str, **fields) -> None:
        if fields.get("reason"):
            logger.info(event, **fields)
        else:
            logger.debug(event, **fields)
        if self.event_hook is None:
            return
        # state is already mutated here, so a failing hook must not abort the call
        try:
            self.event_hook(event, fields)
        except Exception:
            logger.exception("event_hook_failed", hook_event=event)

    def required_votes(self) -> int:
        return self.registry.required_votes()

    def propose(self, block: Block) -> bool:
        if block is None:
            raise InvalidArgument("block is required")

        proposer = self.registry.by_id(block.validator_id) if block.validator_id else None
        if proposer is None:
            self._emit("proposal_rejected", height=block.height, reason="unknown proposer",
                       validator=block.validator_id)
            return False
        if not self.registry.is_authorized(proposer.public_key):
            self._emit("proposal_rejected", height=block.height, reason="proposer not authorized",
                       validator=block.validator_id)
            return False
        if block.height < 0:
            self._emit("proposal_rejected", height=block.height, reason="negative height",
                       validator=block.validator_id)
            return False
        if not block.is_hash_valid():
            self._emit("proposal_rejected", height=block.height, reason="hash mismatch",
                       validator=block.validator_id)
            return False
        if not block.verify_signature(proposer.public_key):
            self._emit("proposal_rejected", height=block.height, reason="bad signature",
                       validator=block.validator_id)
            return False

        with self._lock:
            candidates = self._candidates.setdefault(block.height, {})
            if block.hash not in candidates:
                candidates[block.hash] = block
            self._record_vote(block.height, block.hash, proposer.validator_id, True)

        self._emit("block_proposed", height=block.height, hash=block.hash[:8], validator=block.validator_id)
        return True

    def vote(self, height: int, block_hash: str, public_key, approve: bool) -> bool:
        if not public_key:
            raise InvalidArgument("public_key is required")
        if not block_hash:
            raise InvalidArgument("block_hash is required")
        if height < 0:
            return False

        voter = self.registry.by_public_key(public_key)
        if voter is None or not voter.active:
            self._emit("vote_rejected", height=height, reason="voter not authorized")
            return False

        with self._lock:
            self._record_vote(height, block_hash, voter.validator_id, approve)

        self._emit("vote_recorded", height=height, hash=block_hash[:8], validator=voter.validator_id,
                   approve=approve)
        return True

    def _record_vote(self, height: int, block_hash: str, validator_id: str, approve: bool) -> None:
        by_candidate = self._votes.setdefault(height, {})
        if approve:
            # a validator backs at most one candidate per height
            for other_hash, ballots in by_candidate.items():
                if other_hash != block_hash and ballots.get(validator_id):
                    del ballots[validator_id]
        by_candidate.setdefault(block_hash, {})[validator_id] = approve

    def vote_count(self, height: int, block_hash: str) -> int:
        if not block_hash:
            raise InvalidArgument("block_hash is required")
        with self._lock:
            ballots = self._votes.get(height, {}).get(block_hash, {})
            return sum(1 for approve in ballots.values() if approve)

    def has_consensus(self, height: int, block_hash: str) -> bool:
        return self.vote_count(height, block_hash) >= self.required_votes()

    def get_consensus_block(self, height: int) -> Optional[Block]:
        with self._lock:
            for block_hash, block in self._candidates.get(height, {}).items():
                if self.has_consensus(height, block_hash):
                    return block
        return None

    def clear_pending(self, height: int) -> None:
        with self._lock:
            self._candidates.pop(height, None)
            self._votes.pop(height, None)
        self._emit("height_cleared", height=height)

    def pending_heights(self) -> List[int]:
        with self._lock:
            return sorted(set(self._candidates) | set(self._votes))

    def candidates(self, height: int) -> List[Block]:
        with self._lock:
            return list(self._candidates.get(height, {}).values())

    def rule_violation(self, block: Block, previous: Optional[Block]) -> Optional[str]:
        """Name the first consensus rule ``block`` breaks, or ``None``."""
        if block is None:
            raise InvalidArgument("block is required")

        proposer = self.registry.by_id(block.validator_id) if block.validator_id else None
        if proposer is None:
            return "unknown proposer"
        if not self.registry.is_authorized(proposer.public_key):
            return "proposer not authorized"
        if not block.is_hash_valid():
            return "hash mismatch"
        if not block.verify_signature(proposer.public_key):
            return "bad signature"

        if previous is None:
            if block.height != 0:
                return "missing predecessor"
            return None
        if block.height != previous.height + 1:
            return "height not contiguous"
        if not block.is_linked_to(previous):
            return "previous hash does not match"
        if block.timestamp < previous.timestamp:
            return "timestamp went backwards"
        return None

    def enforce_rules(self, block: Block, previous: Optional[Block]) -> bool:
        reason = self.rule_violation(block, previous)
        if reason:
            self._emit("rules_failed", height=block.height, hash=block.hash[:8], reason=reason)
            return False
        return True

    def should_accept(self, block: Block, previous: Optional[Block]) -> bool:
        if not self.enforce_rules(block, previous):
            return False
        if previous is None and block.height == 0:
            return True

        agreed = self.get_consensus_block(block.height)
        if agreed is None:
            self._emit("block_not_accepted", height=block.height, reason="no consensus yet")
            return False
        if agreed.hash != block.hash:
            self._emit("block_not_accepted", height=block.height, reason="another candidate won",
                       winner=agreed.hash[:8])
            return False
        return True
