from collections.abc import Generator
from typing import Annotated

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.authorization import Principal
from app.core.config import settings
from app.core.db import engine
from app.core.errors import AuthenticationError, AuthorizationError
from app.core.security import decode_access_token
from app.repositories import SqlApplicationRepository, SqlHolderRepository
from app.services.blob import BlobStore, get_blob_store
from app.services.vision import VisionService, get_vision_service
from app.services.workflow import ApplicationWorkflow

bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
CredentialsDep = Annotated[
    HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
]


def get_current_principal(credentials: CredentialsDep) -> Principal:
    if credentials is None:
        raise AuthenticationError()
    try:
        claims = decode_access_token(credentials.credentials)
    except jwt.InvalidTokenError:
        raise AuthorizationError("Could not validate credentials")
    if not claims.get("sub"):
        raise AuthorizationError("Could not validate credentials")
    return Principal.from_claims(claims, settings.ROLE_CLAIM)


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
BlobStoreDep = Annotated[BlobStore, Depends(get_blob_store)]
VisionDep = Annotated[VisionService, Depends(get_vision_service)]


def get_workflow(
    session: SessionDep, vision: VisionDep, blobs: BlobStoreDep
) -> ApplicationWorkflow:
    return ApplicationWorkflow(
        SqlApplicationRepository(session),
        SqlHolderRepository(session),
        vision=vision,
        blobs=blobs,
    )


WorkflowDep = Annotated[ApplicationWorkflow, Depends(get_workflow)]
