from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, field_validator, model_validator


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class ContactRecord(BaseModel):
    """One row of the Contact table."""

    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime
    updatedAt: datetime
    deletedAt: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == LinkPrecedence.PRIMARY

    @property
    def governing_id(self) -> Optional[int]:
        """Id of the primary this record defers to (itself when primary)."""
        return self.id if self.is_primary else self.linkedId

    @property
    def age_key(self):
        return (self.createdAt, self.id)


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def empty_email_as_missing(cls, value: Any) -> Any:
        return None if value == "" else value

    @field_validator("email")
    @classmethod
    def check_email_syntax(cls, value: Optional[str]) -> Optional[str]:
        # Matching is exact, so the submitted string is kept as-is
        if value is None:
            return value
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValueError(f"Invalid email address: {exc}") from exc
        return value

    @field_validator("phoneNumber", mode="before")
    @classmethod
    def normalize_phone(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @model_validator(mode="after")
    def require_identifier(self) -> "IdentifyRequest":
        if self.email is None and self.phoneNumber is None:
            raise ValueError("At least one of email or phoneNumber must be provided")
        return self


class ContactResponse(BaseModel):
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class FinalResponse(BaseModel):
    contact: ContactResponse


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
    details: Optional[List[Any]] = None
