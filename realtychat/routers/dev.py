# realtychat/routers/dev.py
# Endpoints de desarrollo (solo se montan con APP_ENV=dev)
from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from ..db import get_db
from ..schemas.user import UserOut
from .auth import Signup, create_user

router = APIRouter()

@router.post("/create-admin", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_admin(payload: Signup, db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    Crea un usuario administrador, que es quien atiende el chat de soporte.
    Solo para desarrollo.
    """
    return await create_user(db, payload, role="admin")
