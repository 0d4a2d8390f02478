from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..settings import settings
from ..db import get_db
from ..models import User as UserRow, AuthSession

router = APIRouter(prefix="/api/auth", tags=["auth"])

logger = logging.getLogger(__name__)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


class User(BaseModel):
	id: int
	username: str
	email: str
	first_name: Optional[str] = None
	last_name: Optional[str] = None
	school: Optional[str] = None
	program: Optional[str] = None
	year: Optional[str] = None
	program_choice_reason: Optional[str] = None
	career_goals: Optional[str] = None

	model_config = {"from_attributes": True}


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"
	user: Optional[User] = None


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode("utf-8")
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def authenticate_user(db: Session, login: str, password: str) -> Optional[UserRow]:
	login = (login or "").strip()
	row = db.query(UserRow).filter(or_(UserRow.email == login.lower(), UserRow.username == login)).first()
	if row and verify_password(password, row.password_hash):
		return row
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	now = datetime.now(timezone.utc)
	try:
		return now + delta
	except OverflowError:
		return datetime.max.replace(tzinfo=timezone.utc)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _open_session(db: Session, user: UserRow) -> Token:
	# Each login gets its own jti so logout revokes only that token
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": str(user.id), "jti": session_id})
	db.add(AuthSession(session_id=session_id, user_id=user.id))
	db.commit()
	return Token(access_token=access_token, user=User.model_validate(user))


def _decode(token: str) -> tuple[int, str]:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		subject = payload.get("sub")
		jti: str | None = payload.get("jti")
		if subject is None or jti is None:
			raise credentials_exception
		return int(subject), jti
	except (JWTError, ValueError):
		raise credentials_exception


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	user_id, jti = _decode(token)
	row = db.get(AuthSession, jti)
	if not row or row.user_id != user_id:
		raise credentials_exception
	user = db.get(UserRow, user_id)
	if user is None:
		raise credentials_exception
	row.last_activity_at = datetime.utcnow()
	db.commit()
	return User.model_validate(user)


class RegisterRequest(BaseModel):
	email: str
	password: str
	username: Optional[str] = None
	first_name: Optional[str] = None
	last_name: Optional[str] = None
	school: Optional[str] = None
	program: Optional[str] = None
	year: Optional[str] = None
	program_choice_reason: Optional[str] = None
	career_goals: Optional[str] = None


class LoginRequest(BaseModel):
	email: str
	password: str


@router.post("/register", response_model=Token, status_code=201)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	email = (req.email or "").strip().lower()
	password = req.password or ""
	if not email or "@" not in email:
		raise HTTPException(status_code=400, detail="A valid email is required")
	if len(password) < 6:
		raise HTTPException(status_code=400, detail="Password must be at least 6 characters")
	username = (req.username or "").strip() or email.split("@")[0]
	if len(username) > 128:
		raise HTTPException(status_code=400, detail="username must be at most 128 characters")
	existing = db.query(UserRow).filter(or_(UserRow.email == email, UserRow.username == username)).first()
	if existing:
		raise HTTPException(status_code=400, detail="User already exists")
	profile = req.model_dump(exclude={"email", "password", "username"})
	row = UserRow(username=username, email=email, password_hash=hash_password(password), **profile)
	db.add(row)
	db.commit()
	db.refresh(row)
	logger.info("Registered user %s", row.id)
	return _open_session(db, row)


@router.post("/login", response_model=Token)
async def login(req: LoginRequest, db: Session = Depends(get_db)):
	user = authenticate_user(db, req.email, req.password)
	if not user:
		raise HTTPException(status_code=401, detail="Invalid credentials")
	return _open_session(db, user)


@router.post("/token", response_model=Token)
async def token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	return _open_session(db, user)


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


@router.post("/logout")
async def logout(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)):
	_, jti = _decode(token)
	row = db.get(AuthSession, jti)
	if row is not None:
		db.delete(row)
		db.commit()
	return {"success": True}
