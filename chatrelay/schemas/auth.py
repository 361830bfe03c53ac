# chatrelay/schemas/auth.py
from pydantic import BaseModel, EmailStr

class AuthRequest(BaseModel):
    email: EmailStr

class AuthResponse(BaseModel):
    user_id: str
    email: EmailStr
    token: str
