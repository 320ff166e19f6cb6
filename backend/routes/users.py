"""
Profile endpoints for the signed-in shopper.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import User
from deps import require_authenticated_user
from domain.responses import success_response
from models import ProfileUpdateRequest
from services import account_service

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/profile")
async def get_profile(user: User = Depends(require_authenticated_user)):
    return success_response(account_service.serialize_user(user))


@router.put("/profile")
async def update_profile(
    body: ProfileUpdateRequest,
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    await account_service.update_profile(
        db,
        user,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        address=body.address,
    )
    await db.commit()
    return {
        "success": True,
        "message": "Profile updated successfully",
        "user": account_service.serialize_user(user),
    }
