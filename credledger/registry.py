from typing import Dict, Iterable, Optional, Tuple

import structlog

from credledger.exceptions import InvalidArgument
from credledger.models.validator import Validator

logger = structlog.get_logger(__name__)


def _normalize_key(public_key) -> Optional[bytes]:
    """Raw key bytes, or ``None`` when the key cannot be decoded."""
    if not public_key:
        raise InvalidArgument("public_key is required")
    if isinstance(public_key, str):
        try:
            return bytes.fromhex(public_key)
        except ValueError:
            return None
    try:
        return bytes(public_key)
    except TypeError:
        return None


class ValidatorRegistry:
    """The fixed set of authorities allowed to propose and vote.

    Built once at startup and read-only afterwards, so lookups need no lock.
    Only public views are stored; private keys never enter the registry.
    """

    def __init__(self, validators: Iterable[Validator]):
        self._by_id: Dict[str, Validator] = {}
        self._by_key: Dict[bytes, Validator] = {}
        for validator in validators:
            public = validator.public_view()
            if public.validator_id in self._by_id:
                raise InvalidArgument(f"duplicate validator id {public.validator_id}")
            key = bytes(public.public_key)
            if key in self._by_key:
                raise InvalidArgument(f"duplicate public key for validator {public.validator_id}")
            self._by_id[public.validator_id] = public
            self._by_key[key] = public
        logger.debug("registry_loaded", validators=len(self._by_id), required_votes=self.required_votes())

    def is_authorized(self, public_key) -> bool:
        key = _normalize_key(public_key)
        validator = self._by_key.get(key) if key is not None else None
        return validator is not None and validator.active

    def by_id(self, validator_id: str) -> Optional[Validator]:
        if not validator_id:
            raise InvalidArgument("validator_id is required")
        return self._by_id.get(validator_id)

    def by_public_key(self, public_key) -> Optional[Validator]:
        key = _normalize_key(public_key)
        return self._by_key.get(key) if key is not None else None

    def all(self) -> Tuple[Validator, ...]:
        return tuple(self._by_id.values())

    def public_keys(self) -> Dict[str, bytes]:
        return {vid: v.public_key for vid, v in self._by_id.items()}

    def required_votes(self) -> int:
        # inactive entries count toward N as well
        return len(self._by_id) // 2 + 1

    def __len__(self):
        return len(self._by_id)

    def __contains__(self, validator_id):
        return validator_id in self._by_id
