from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, field_validator
from typing import Optional, List, Union


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(BaseModel):
    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime
    updatedAt: datetime

    @field_validator("createdAt", "updatedAt")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # rows written by SQLite defaults or older clients carry no offset
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == LinkPrecedence.PRIMARY

    @property
    def governing_id(self) -> int:
        """Id of the contact this one answers to: itself if primary, else its link."""
        return self.id if self.is_primary else self.linkedId

    def sort_key(self):
        return (self.createdAt, self.id)


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[Union[str, int]] = None

class ContactResponse(BaseModel):
    primaryContactId: int  
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]

class FinalResponse(BaseModel):
    contact: ContactResponse

class ErrorResponse(BaseModel):
    error: str
