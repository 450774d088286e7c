from fastapi import APIRouter

from approval_service.api.v1 import approval_rules, approval_sessions

api_router = APIRouter()

api_router.include_router(approval_rules.router, prefix="/approval-rules", tags=["approval-rules"])
api_router.include_router(approval_sessions.router, prefix="/approval-sessions", tags=["approval-sessions"])
