from datetime import date

from credledger.models.block import Block
from credledger.models.credential import CredentialRecord, national_id_check_digit
from credledger.models.validator import Validator


def make_national_id(prefix: str) -> str:
    return prefix + str(national_id_check_digit(prefix))


def make_credential(student_id="1101700230708", credential_id=None, **overrides) -> CredentialRecord:
    fields = dict(
        student_name="Somchai Jaidee",
        student_id=student_id,
        degree="B.Eng. Computer Engineering",
        institution="Chulalongkorn University",
        date_awarded=date(2023, 5, 20),
        credential_id=credential_id,
    )
    fields.update(overrides)
    return CredentialRecord(**fields)


def next_block(validator: Validator, previous: Block, credential=None, sign=True, timestamp=None) -> Block:
    block = Block(
        previous.height + 1,
        previous.hash,
        credential or make_credential(),
        validator.validator_id,
        timestamp=timestamp if timestamp is not None else previous.timestamp + 1000,
    )
    if sign:
        validator.sign_block(block)
    return block


class RecordingBroadcaster:
    def __init__(self):
        self.blocks = []
        self.votes = []

    def broadcast_block(self, block):
        self.blocks.append(block)

    def broadcast_vote(self, vote):
        self.votes.append(vote)


class InMemoryNetwork:
    """Delivers blocks and votes synchronously to every other attached node."""

    def __init__(self):
        self.nodes = []

    def attach(self, node):
        self.nodes.append(node)
        node.broadcaster = _NodeLink(self, node)

    def deliver_block(self, sender, block):
        for node in self.nodes:
            if node is not sender:
                node.on_block_received(block)

    def deliver_vote(self, sender, vote):
        for node in self.nodes:
            if node is not sender:
                node.on_vote_received(vote)


class _NodeLink:
    def __init__(self, network, node):
        self.network = network
        self.node = node

    def broadcast_block(self, block):
        self.network.deliver_block(self.node, block)

    def broadcast_vote(self, vote):
        self.network.deliver_vote(self.node, vote)
