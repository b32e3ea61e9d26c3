"""HTTP Basic authentication for the ingest API."""
import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from media_ingest.core.config import Settings
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

security: HTTPBasic = HTTPBasic()


def authenticate_user(request: Request, credentials: HTTPBasicCredentials = Depends(security)):
    """Check HTTP Basic credentials against the settings the application was built with."""
    settings: Settings = request.app.state.settings
    correct_username = secrets.compare_digest(
        credentials.username.encode("utf-8"), settings.auth_username.encode("utf-8")
    )
    correct_password = secrets.compare_digest(
        credentials.password.encode("utf-8"), settings.auth_password.encode("utf-8")
    )

    if not (correct_username and correct_password):
        logger.error(f"Failed authentication attempt for username: {credentials.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username
