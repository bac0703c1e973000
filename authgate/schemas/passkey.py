from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PasskeyRegistrationVerifyRequest(BaseModel):
    ceremony_id: str
    credential: Dict[str, Any]
    nickname: Optional[str] = Field(None, max_length=100)


class PasskeyAuthenticationOptionsRequest(BaseModel):
    """Leave ``username`` empty for a discoverable-credential sign-in."""
    username: Optional[str] = None


class PasskeyAuthenticationVerifyRequest(BaseModel):
    ceremony_id: str
    credential: Dict[str, Any]
    remember_me: bool = False


class PasskeyRenameRequest(BaseModel):
    nickname: str = Field(..., min_length=1, max_length=100)
