from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional


class SignRequest(BaseModel):
    # extra fields and missing required ones are left to payload validation,
    # which reports them by name
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    batch: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    expiresIn: Optional[int] = Field(default=None, gt=0)

    def payload(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        data.pop("expiresIn", None)
        return data


class SignResponse(BaseModel):
    signedToken: str
    verifyUrl: str
    productId: str
    expiresAt: Optional[int] = None


class VerifyRequest(BaseModel):
    signedToken: Optional[str] = None
