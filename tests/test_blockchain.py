import pytest

from credledger.exceptions import InvalidArgument
from credledger.models.block import ROOT_HASH, Block
from credledger.models.blockchain import Blockchain, create_genesis_block
from credledger.models.validator import Validator
from helpers import make_credential, make_national_id, next_block


def build_chain(validators, length):
    chain = Blockchain()
    for i in range(length):
        proposer = validators[i % len(validators)]
        chain.append(next_block(proposer, chain.latest_block(),
                                credential=make_credential(credential_id=f"CRED-{i}")))
    return chain


def test_new_chain_starts_with_genesis(chain):
    assert len(chain) == 1
    assert chain.height == 0
    genesis = chain.get_block(0)
    assert genesis.previous_hash == ROOT_HASH
    assert genesis.hash == create_genesis_block().hash


def test_valid_chain_passes(validators, registry):
    chain = build_chain(validators, 5)
    assert chain.height == 5
    assert chain.validate(registry)
    assert chain.validate(registry.public_keys())


def test_validate_requires_snapshot(chain):
    with pytest.raises(InvalidArgument):
        chain.validate(None)


def test_height_gap_rejected(validators, registry):
    chain = build_chain(validators, 1)
    tip = chain.latest_block()
    gap = Block(tip.height + 2, tip.hash, make_credential(), validators[0].validator_id,
                timestamp=tip.timestamp + 1)
    validators[0].sign_block(gap)
    chain.append(gap)
    assert not chain.validate(registry)


def test_broken_link_rejected(validators, registry):
    chain = build_chain(validators, 1)
    tip = chain.latest_block()
    orphan = Block(tip.height + 1, "f" * 64, make_credential(), validators[0].validator_id,
                   timestamp=tip.timestamp + 1)
    validators[0].sign_block(orphan)
    chain.append(orphan)
    assert not chain.validate(registry)


def test_decreasing_timestamp_rejected(validators, registry):
    chain = build_chain(validators, 1)
    tip = chain.latest_block()
    chain.append(next_block(validators[1], tip, timestamp=tip.timestamp - 1))
    assert not chain.validate(registry)


def test_equal_timestamps_allowed(validators, registry):
    chain = build_chain(validators, 1)
    tip = chain.latest_block()
    chain.append(next_block(validators[1], tip, timestamp=tip.timestamp))
    assert chain.validate(registry)


def test_bad_signature_rejected(validators, registry):
    chain = build_chain(validators, 1)
    tip = chain.latest_block()
    block = next_block(validators[1], tip, sign=False)
    block.attach_signature(validators[2].sign(block.hash))
    chain.append(block)
    assert not chain.validate(registry)


def test_unsigned_block_rejected(validators, registry):
    chain = build_chain(validators, 1)
    chain.append(next_block(validators[1], chain.latest_block(), sign=False))
    assert not chain.validate(registry)


def test_missing_public_key_fails_closed(validators, registry):
    chain = build_chain(validators, 2)
    keys = registry.public_keys()
    del keys[chain.latest_block().validator_id]
    assert not chain.validate(keys)


def test_unregistered_proposer_rejected(validators, registry):
    chain = build_chain(validators, 1)
    outsider = Validator.generate("outsider", "Mallory", "Diploma Mill")
    chain.append(next_block(outsider, chain.latest_block()))
    assert not chain.validate(registry)


def test_tampered_block_rejected(validators, registry):
    chain = build_chain(validators, 3)
    data = chain.to_dicts()
    data[2]["credential"]["student_name"] = "Someone Else"
    assert not Blockchain.from_dicts(data).validate(registry)


def test_forged_genesis_rejected(validators, registry):
    fake_genesis = Block(0, ROOT_HASH, make_credential(), "genesis", timestamp=0)
    chain = Blockchain([fake_genesis])
    assert not chain.validate(registry)


def test_round_trip_validates_identically(validators, registry):
    chain = build_chain(validators, 4)
    restored = Blockchain.from_dicts(chain.to_dicts())
    assert len(restored) == len(chain)
    assert [b.hash for b in restored] == [b.hash for b in chain]
    assert restored.validate(registry) == chain.validate(registry) is True


class TestQueries:
    def test_search_by_student(self, validators):
        chain = Blockchain()
        other_student = make_national_id("110170023071")
        chain.append(next_block(validators[0], chain.latest_block()))
        chain.append(next_block(validators[1], chain.latest_block(),
                                credential=make_credential(student_id=other_student)))
        chain.append(next_block(validators[2], chain.latest_block(),
                                credential=make_credential(degree="M.Sc. Data Science")))
        found = chain.search("1101700230708")
        assert [b.height for b in found] == [1, 3]
        assert [b.height for b in chain.search(other_student)] == [2]

    @pytest.mark.parametrize("student_id", ["", "   ", None, "1234567890121"])
    def test_search_blank_or_unknown(self, validators, student_id):
        chain = build_chain(validators, 2)
        assert chain.search(student_id) == []

    def test_get_block_and_latest(self, validators):
        chain = build_chain(validators, 3)
        assert chain.get_block(2).height == 2
        assert chain.get_block(10) is None
        assert chain.get_block(-1) is None
        assert chain.latest_block().height == 3

    def test_find_by_credential_id(self, validators):
        chain = build_chain(validators, 3)
        assert chain.find_by_credential_id("CRED-1").height == 2
        assert chain.find_by_credential_id("missing") is None
        assert chain.find_by_credential_id("") is None


def test_append_requires_block(chain):
    with pytest.raises(InvalidArgument):
        chain.append(None)


class TestAppendIfTip:
    def test_appends_when_tip_matches(self, validators, registry):
        chain = Blockchain()
        genesis = chain.latest_block()
        block = next_block(validators[0], genesis)
        assert chain.append_if_tip(block, genesis.hash)
        assert chain.latest_block() is block
        assert chain.validate(registry)

    def test_refuses_when_tip_moved(self, validators):
        chain = Blockchain()
        genesis = chain.latest_block()
        block = next_block(validators[0], genesis)
        chain.append(block)
        assert not chain.append_if_tip(block, genesis.hash)
        assert len(chain) == 2

    def test_requires_block(self, chain):
        with pytest.raises(InvalidArgument):
            chain.append_if_tip(None, chain.latest_block().hash)
