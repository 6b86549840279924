from dataclasses import dataclass, replace

from credledger import crypto
from credledger.exceptions import InvalidArgument


@dataclass(frozen=True)
class Vote:
    """One validator's decision about one candidate block.

    This is the message the transport layer relays between validators; the
    signature covers every field except itself.
    """

    height: int
    block_hash: str
    voter_id: str
    public_key: bytes
    approve: bool
    timestamp: int = 0
    signature: str = ""

    @property
    def decision(self) -> str:
        return "accept" if self.approve else "reject"

    def get_bytes(self) -> bytes:
        return f"{self.height}|{self.block_hash}|{self.voter_id}|{self.decision}|{self.timestamp}".encode("utf-8")

    def signed(self, signature: str) -> "Vote":
        return replace(self, signature=signature)

    def verify(self, public_key=None) -> bool:
        return crypto.verify(self.get_bytes(), self.signature, public_key or self.public_key)

    def to_dict(self):
        return {
            "height": self.height,
            "block_hash": self.block_hash,
            "voter_id": self.voter_id,
            "public_key": self.public_key.hex(),
            "decision": self.decision,
            "timestamp": self.timestamp,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data):
        try:
            return cls(
                height=int(data["height"]),
                block_hash=data["block_hash"],
                voter_id=data["voter_id"],
                public_key=bytes.fromhex(data["public_key"]),
                approve=data["decision"] == "accept",
                timestamp=int(data.get("timestamp", 0)),
                signature=data.get("signature", ""),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidArgument(f"malformed vote data: {e}") from e
