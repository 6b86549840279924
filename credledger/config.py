"""Node configuration.

The validator set and the local signing key come from a JSON file, by default
``node_config.json`` in the working directory (override with
``CREDLEDGER_CONFIG``)::

    {
      "validators": [
        {"id": "chula", "name": "Registrar", "institution": "Chulalongkorn University",
         "public_key": "<hex>", "active": true}
      ],
      "node": {"validator_id": "chula", "private_key": "<hex>"}
    }
"""

import json
import os
from typing import Optional

import structlog

from credledger.exceptions import ConfigError, InvalidArgument
from credledger.models.validator import Validator
from credledger.registry import ValidatorRegistry

logger = structlog.get_logger(__name__)

CONFIG_ENV = "CREDLEDGER_CONFIG"
DEFAULT_CONFIG_FILE = "node_config.json"


def config_path(path: Optional[str] = None) -> str:
    return path or os.getenv(CONFIG_ENV, DEFAULT_CONFIG_FILE)


def load_config(path: Optional[str] = None) -> dict:
    config_file = config_path(path)
    if not os.path.exists(config_file):
        raise ConfigError(f"config file {config_file} not found")
    try:
        with open(config_file) as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot read {config_file}: {e}") from e
    if not isinstance(config, dict) or not isinstance(config.get("validators"), list):
        raise ConfigError(f"{config_file} must contain a 'validators' list")
    return config


def _validator_from_entry(entry) -> Validator:
    try:
        return Validator(
            validator_id=entry["id"],
            name=entry.get("name", entry["id"]),
            institution=entry.get("institution", ""),
            public_key=bytes.fromhex(entry["public_key"]),
            active=bool(entry.get("active", True)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"bad validator entry {entry!r}: {e}") from e


def registry_from_config(config: dict) -> ValidatorRegistry:
    validators = [_validator_from_entry(entry) for entry in config["validators"]]
    try:
        registry = ValidatorRegistry(validators)
    except InvalidArgument as e:
        raise ConfigError(str(e)) from e
    logger.info("validators_loaded", count=len(registry), required_votes=registry.required_votes())
    return registry


def load_registry(path: Optional[str] = None) -> ValidatorRegistry:
    return registry_from_config(load_config(path))


def load_local_validator(path: Optional[str] = None, registry: Optional[ValidatorRegistry] = None) -> Validator:
    """Return the registry entry for this node, with its private key attached."""
    config = load_config(path)
    if registry is None:
        registry = registry_from_config(config)

    node = config.get("node") or {}
    validator_id = node.get("validator_id")
    if not validator_id or not node.get("private_key"):
        raise ConfigError("'node' section needs validator_id and private_key")
    entry = registry.by_id(validator_id)
    if entry is None:
        raise ConfigError(f"node validator {validator_id} is not in the validator list")

    try:
        local = Validator.with_private_key(entry.validator_id, entry.name, entry.institution,
                                           node["private_key"], entry.active)
    except InvalidArgument as e:
        raise ConfigError(str(e)) from e
    if local.public_key != entry.public_key:
        raise ConfigError(f"private key for {validator_id} does not match its registered public key")
    logger.info("node_identity_loaded", validator=validator_id)
    return local
