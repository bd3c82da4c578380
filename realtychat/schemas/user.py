from pydantic import BaseModel, EmailStr
from typing import Literal, Optional

Role = Literal["user", "agent", "admin"]

class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: Role = "user"
    phone: Optional[str] = None
    created_at: Optional[str] = None
