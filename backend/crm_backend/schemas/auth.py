from pydantic import BaseModel, Field

from crm_backend.schemas.user import UserOut


class GoogleLoginRequest(BaseModel):
    credential: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut
