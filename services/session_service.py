"""Session Service - signed bearer tokens keyed by user id"""
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from jose import JWTError, jwt

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


class SessionService:
    def __init__(self, secret: str, algorithm: str = ALGORITHM, expire_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES):
        self.secret = secret
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes
        # jti -> exp (unix seconds); entries drop out once the token expires anyway
        self._revoked: Dict[str, int] = {}
        self._lock = threading.Lock()

    def establish(self, user_id: int) -> str:
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.expire_minutes)
        claims = {"sub": str(user_id), "jti": uuid.uuid4().hex, "exp": expire}
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def _decode(self, token: str) -> Optional[dict]:
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError:
            return None

    def resolve(self, token: Optional[str]) -> Optional[int]:
        if not token:
            return None
        payload = self._decode(token)
        if not payload:
            return None
        with self._lock:
            if payload.get("jti") in self._revoked:
                return None
        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            return None

    def destroy(self, token: Optional[str]) -> None:
        payload = self._decode(token) if token else None
        if not payload or "jti" not in payload:
            return
        now = int(time.time())
        with self._lock:
            self._revoked = {jti: exp for jti, exp in self._revoked.items() if exp > now}
            self._revoked[payload["jti"]] = int(payload.get("exp", now))
