import logging
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import IntegrityError

from config import Settings
from errors import Conflict
from models import User, UserId
from repositories import UserRepository
from schemas import RegisterIn


logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class AuthService:
    def __init__(self, users: UserRepository, settings: Settings) -> None:
        self.users = users
        self.max_age = settings.token_max_age_secs
        self.serializer = URLSafeTimedSerializer(
            settings.token_secret, salt="access-token"
        )

    def register(self, data: RegisterIn) -> tuple[User, str]:
        if self.users.find_by_email(data.email):
            raise Conflict("Email already in use")
        try:
            user = self.users.create(
                {
                    "name": data.name.strip(),
                    "email": data.email,
                    "password_hash": hash_password(data.password),
                }
            )
        except IntegrityError as exc:
            # lost a race with a concurrent registration for the same address
            raise Conflict("Email already in use") from exc
        logger.info(f"user_registered: user_id={user.id}")
        return user, self.generate_token(user.id)

    def validate_user(self, email: str, password: str) -> Optional[User]:
        user = self.users.find_by_email(email)
        if not user or not user.password_hash:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    def generate_token(self, user_id: UserId) -> str:
        return self.serializer.dumps({"u": user_id})

    def verify_token(self, token: str) -> Optional[UserId]:
        try:
            data = self.serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            logger.info("token_rejected: reason=expired")
            return None
        except BadSignature:
            logger.info("token_rejected: reason=bad_signature")
            return None
        if not isinstance(data, dict) or not isinstance(data.get("u"), str):
            return None
        return UserId(data["u"])
