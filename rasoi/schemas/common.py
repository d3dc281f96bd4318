from pydantic import BaseModel
from typing import Optional

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str

class SignupIn(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    password: str

class ErrorOut(BaseModel):
    error: str
    detail: str
