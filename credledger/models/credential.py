import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from credledger.exceptions import InvalidCredential

NATIONAL_ID_LENGTH = 13


def national_id_check_digit(first_twelve: str) -> int:
    total = sum(int(d) * (NATIONAL_ID_LENGTH - i) for i, d in enumerate(first_twelve))
    return (11 - total % 11) % 10


def is_valid_national_id(value: str) -> bool:
    if not isinstance(value, str) or len(value) != NATIONAL_ID_LENGTH or not value.isdigit():
        return False
    return national_id_check_digit(value[:12]) == int(value[12])


@dataclass(frozen=True)
class CredentialRecord:
    student_name: str
    student_id: str
    degree: str
    institution: str
    date_awarded: date
    credential_id: Optional[str] = None

    def __post_init__(self):
        for field_name in ("student_name", "degree", "institution"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value.strip():
                raise InvalidCredential(f"{field_name} is required")
        if not is_valid_national_id(self.student_id):
            raise InvalidCredential(f"student_id {self.student_id!r} is not a valid national ID")
        if isinstance(self.date_awarded, datetime) or not isinstance(self.date_awarded, date):
            raise InvalidCredential("date_awarded must be a date")
        if self.date_awarded > date.today():
            raise InvalidCredential("date_awarded cannot be in the future")
        if self.credential_id is not None and not str(self.credential_id).strip():
            raise InvalidCredential("credential_id must not be blank")

    def to_dict(self):
        return {
            "student_name": self.student_name,
            "student_id": self.student_id,
            "degree": self.degree,
            "institution": self.institution,
            "date_awarded": self.date_awarded.isoformat(),
            "credential_id": self.credential_id,
        }

    @classmethod
    def from_dict(cls, data):
        try:
            awarded = date.fromisoformat(data["date_awarded"])
            fields = {k: data[k] for k in ("student_name", "student_id", "degree", "institution")}
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidCredential(f"malformed credential data: {e}") from e
        return cls(date_awarded=awarded, credential_id=data.get("credential_id"), **fields)

    def canonical(self) -> str:
        """Fixed textual form fed into the block hash."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    def __str__(self):
        return self.canonical()
