from pydantic import Field

from instructor_booking.schemas.common import CamelModel


class CurrentUserResponse(CamelModel):
    id: str
    email: str
    full_name: str
    role: str
    timezone: str = "UTC"


class RegisterRequest(CamelModel):
    full_name: str = Field(min_length=2, max_length=120)
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=8, max_length=256)
    timezone: str = "UTC"


class LoginRequest(CamelModel):
    email: str
    password: str


class AuthTokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    user: CurrentUserResponse
