import pytest

from credledger.consensus import ConsensusEngine
from credledger.models.blockchain import Blockchain
from credledger.models.validator import Validator
from credledger.registry import ValidatorRegistry


@pytest.fixture
def validators():
    return [
        Validator.generate("chula", "Registrar", "Chulalongkorn University"),
        Validator.generate("mahidol", "Registrar", "Mahidol University"),
        Validator.generate("kmutt", "Registrar", "KMUTT"),
        Validator.generate("cmu", "Registrar", "Chiang Mai University"),
    ]


@pytest.fixture
def registry(validators):
    return ValidatorRegistry(validators)


@pytest.fixture
def engine(registry):
    return ConsensusEngine(registry)


@pytest.fixture
def chain():
    return Blockchain()
