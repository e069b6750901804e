from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from ..settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])

# Tokens are issued by the account service; this API only verifies them
bearer_scheme = HTTPBearer(auto_error=False)


class User(BaseModel):
	user_id: str


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
	"""Sign a token the way the account service does; used by tests and local tooling."""
	expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=1))
	to_encode = {"sub": user_id, "exp": expire}
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> User:
	credentials_exception = HTTPException(
		status_code=401,
		detail="Could not validate credentials",
		headers={"WWW-Authenticate": "Bearer"},
	)
	if credentials is None:
		raise credentials_exception
	try:
		payload = jwt.decode(credentials.credentials, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		user_id: str | None = payload.get("sub")
		if not user_id:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	return User(user_id=user_id)


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user
