import functools
import hashlib
import logging
import os
import re
from datetime import datetime, timedelta

import jwt
import pytz
from flask import current_app, jsonify, request

from axedash.config import ACCESS_FILE, JWT_KEY_FILE, read_json
from axedash.errors import AuthError, ConfigError

logger = logging.getLogger(__name__)

COOKIE_NAME = "sessionToken"
ALGORITHM = "HS256"
DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
UNITS = {"h": 3600, "m": 60, "s": 1}


def parse_duration(text):
    """Parse "1h", "30m", "1h30m" or "45s" into a timedelta."""
    text = (text or "").strip()
    if not text or DURATION_RE.sub("", text):
        raise AuthError(f"invalid expiresIn format: {text!r}")
    seconds = sum(float(n) * UNITS[unit] for n, unit in DURATION_RE.findall(text))
    return timedelta(seconds=seconds)


def hash_password(password):
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def load_access_credentials(config_dir):
    data = read_json(os.path.join(config_dir, ACCESS_FILE))
    if not isinstance(data, dict):
        raise AuthError(f"{ACCESS_FILE} must hold a username/hash object")
    return data


class JwtService:
    def __init__(self, secret_key, expires_in):
        self.secret_key = secret_key
        self.expires_in = expires_in

    @classmethod
    def from_config_dir(cls, config_dir):
        try:
            data = read_json(os.path.join(config_dir, JWT_KEY_FILE))
        except ConfigError as e:
            raise AuthError(f"could not load JWT secret key: {e}")
        if not isinstance(data, dict) or not data.get("jsonWebTokenKey") or not data.get("expiresIn"):
            raise AuthError(f"jsonWebTokenKey or expiresIn key not found in {JWT_KEY_FILE}")
        return cls(data["jsonWebTokenKey"], parse_duration(data["expiresIn"]))

    def create_token(self, username):
        now = datetime.now(pytz.utc)
        claims = {"username": username, "iat": now, "exp": now + self.expires_in}
        return jwt.encode(claims, self.secret_key, algorithm=ALGORITHM)

    def verify_token(self, token):
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
        except jwt.InvalidTokenError as e:
            raise AuthError(f"JWT verification error: {e}")
        if "username" not in claims:
            raise AuthError("token carries no username")
        return claims


def login_required(view):
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        services = current_app.config["AXEDASH"]
        if services.store.get().disable_authentication:
            return view(*args, **kwargs)
        token = request.cookies.get(COOKIE_NAME)
        if not token:
            return jsonify({"message": "Authentication required"}), 401
        try:
            services.jwt_service.verify_token(token)
        except AuthError as e:
            logger.info(f"JWT verification failed for {request.path}: {e}")
            response = jsonify({"message": "Session expired, please log in again"})
            response.delete_cookie(COOKIE_NAME, path="/")
            return response, 401
        return view(*args, **kwargs)
    return wrapper
