from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from typing import Annotated

# 1. Define the scheme (This tells FastAPI where to look for the token)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def require_auth_token(request: Request, token: Annotated[str, Depends(oauth2_scheme)]):
    """
    Dependency function that requires a Bearer token and checks it against
    the tokens configured for the running app.

    If no token is provided, OAuth2PasswordBearer automatically raises
    a 401 Unauthorized exception.
    """
    settings = request.app.state.settings

    if not token or token not in settings.TOKENS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token
