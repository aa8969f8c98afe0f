from typing import List

from fastapi import APIRouter
from pydantic import BaseModel

from quiz_engine.core.auth import create_token

router = APIRouter()


class MockLogin(BaseModel):
    user_id: str
    roles: List[str] = ["student"]


@router.post("/mock-login")
def mock_login(payload: MockLogin):
    token = create_token(payload.user_id, payload.roles)
    return {"access_token": token, "token_type": "bearer", "roles": payload.roles}
