import logging

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from doctor_availability.auth import jwt_handler
from doctor_availability.schedule.actors import Actor, actor_from_claims

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    try:
        return actor_from_claims(payload)
    except ValueError as exc:
        logger.warning("Rejected token claims: %s", exc)
        raise HTTPException(status_code=401, detail=str(exc)) from exc
