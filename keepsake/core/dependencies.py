"""
Core dependencies for route protection
"""

from fastapi import Depends, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from keepsake.database.supabase_client import get_supabase
from keepsake.modules.auth.service import AuthService
from supabase import AsyncClient

security = HTTPBearer()


def get_auth_service(supabase: AsyncClient = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Extract current user info from JWT token"""
    token = credentials.credentials
    user_data = await auth_service.get_current_user(token)
    return user_data
