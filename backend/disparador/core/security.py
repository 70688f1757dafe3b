# disparador/core/security.py

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, Iterable, Optional

from bson import ObjectId
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from loguru import logger
from passlib.context import CryptContext
from pydantic import ValidationError

from disparador.core.config import settings
from disparador.core.exceptions import AppError
from disparador.models.auth import TokenPayload
from disparador.modules.companies.repository import CompanyRepository, get_company_repository
from disparador.modules.users.models import UserInDB
from disparador.modules.users.repository import UserRepository, get_user_repository

COMPANY_REQUIRED_MESSAGE = "Usuário precisa estar vinculado a uma empresa"

# Contexto para Hashing de Senhas (Bcrypt)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token")

CredentialsException = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Token inválido ou expirado",
    headers={"WWW-Authenticate": "Bearer"},
)
PermissionException = HTTPException(
    status_code=status.HTTP_403_FORBIDDEN,
    detail="Acesso negado",
)

# --- Senhas ---

def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verifica se a senha plana corresponde ao hash armazenado."""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        # Hash inválido ou de outro esquema
        logger.error(f"Error verifying password (hash might be invalid): {e}")
        return False

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

# --- JWT ---

def create_access_token(data: Dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Cria um novo token de acesso JWT (sub = id do usuário)."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "iat": now, "nbf": now})

    subject = to_encode.get("sub")
    if not subject:
        logger.critical("FATAL: Attempted to create JWT token without 'sub' (subject) claim.")
        raise ValueError("Missing 'sub' claim in token data for JWT creation")

    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    logger.debug(f"Access token created for subject {subject}, expires at {expire.isoformat()}")
    return encoded_jwt

def token_for_user(user: UserInDB, company_id: Optional[ObjectId] = None) -> str:
    effective_company = company_id or user.company_id
    return create_access_token({
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "company_id": str(effective_company) if effective_company else None,
    })

def decode_access_token(token: str) -> TokenPayload:
    """Decodifica e valida o JWT. Levanta CredentialsException (401) se inválido."""
    log = logger.bind(service="AuthTokenValidation")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return TokenPayload.model_validate(payload)
    except ExpiredSignatureError:
        log.warning("Token validation failed: Signature has expired.")
        raise CredentialsException
    except JWTError as e:
        log.warning(f"Invalid JWT token format or signature: {e}")
        raise CredentialsException from e
    except ValidationError as e:
        log.warning(f"Token payload validation error: {e}")
        raise CredentialsException from e

async def get_current_active_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    user_repo: Annotated[UserRepository, Depends(get_user_repository)],
) -> UserInDB:
    """Dependência FastAPI: valida o token e carrega o usuário do banco."""
    token_data = decode_access_token(token)
    user = await user_repo.get_by_id(token_data.sub)
    if user is None:
        logger.bind(service="AuthUserCheck").warning(f"User '{token_data.sub}' from valid token not found.")
        raise CredentialsException
    return user

CurrentUser = Annotated[UserInDB, Depends(get_current_active_user)]

def require_role(*roles: str):
    """Fábrica de dependência que restringe a rota aos papéis informados."""
    allowed: Iterable[str] = set(roles)

    async def _check_role(current_user: CurrentUser) -> UserInDB:
        if current_user.role not in allowed:
            logger.bind(service="AuthRoleCheck").warning(
                f"User {current_user.id} with role '{current_user.role}' denied (requires {sorted(allowed)})"
            )
            raise PermissionException
        return current_user

    return _check_role

SuperAdminUser = Annotated[UserInDB, Depends(require_role("superadmin"))]
AdminUser = Annotated[UserInDB, Depends(require_role("admin", "superadmin"))]

# --- Empresa do request ---

async def resolve_company_id(user: UserInDB, company_repo: CompanyRepository) -> Optional[ObjectId]:
    """Empresa do usuário; superadmin sem empresa usa a empresa do sistema."""
    if user.company_id:
        return user.company_id
    if user.role == "superadmin":
        system_company = await company_repo.get_system_company()
        if system_company:
            return system_company.id
    return None

async def get_optional_company_id(
    current_user: CurrentUser,
    company_repo: Annotated[CompanyRepository, Depends(get_company_repository)],
) -> Optional[ObjectId]:
    return await resolve_company_id(current_user, company_repo)

async def get_required_company_id(
    company_id: Annotated[Optional[ObjectId], Depends(get_optional_company_id)],
) -> ObjectId:
    if company_id is None:
        raise AppError(COMPANY_REQUIRED_MESSAGE)
    return company_id

OptionalCompanyId = Annotated[Optional[ObjectId], Depends(get_optional_company_id)]
CompanyId = Annotated[ObjectId, Depends(get_required_company_id)]
