"""
User Manager Module
Handles user registration and authentication
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

from linechat.storage.credentials import PasswordHasher
from linechat.storage.db import DuplicateIdentityError, StoreError


log = logging.getLogger(__name__)


class UserManager:
    """Registration and login on top of a user store and a password hasher."""

    LOGIN_RE = re.compile(r"^[a-zA-Z0-9_]{3,50}$")

    def __init__(self, user_store, hasher: Optional[PasswordHasher] = None):
        """
        Args:
            user_store: object with insert(login, passhash) / find_by_login(login) / exists(login)
            hasher: PasswordHasher instance (a default one is created if omitted)
        """
        self.users = user_store
        self.hasher = hasher or PasswordHasher()

    @classmethod
    def validate_login(cls, login: str) -> bool:
        """Login validation (alphanumeric + underscore, 3-50 chars)."""
        return bool(cls.LOGIN_RE.match(login))

    def register(self, login: str, password: str) -> Tuple[bool, str]:
        """
        Register a new user.

        Returns:
            (success, reason) - reason is empty on success
        """
        if not self.validate_login(login):
            return False, "Invalid login (3-50 letters, digits or underscores)"

        try:
            self.users.insert(login, self.hasher.hash(password))
        except DuplicateIdentityError:
            return False, f"User '{login}' already exists"
        except StoreError as e:
            log.error("[-] Registration of %s failed: %s", login, e)
            return False, "Storage unavailable"

        return True, ""

    def authenticate(self, login: str, password: str) -> Tuple[bool, str]:
        """
        Authenticate user login.

        Returns:
            (success, reason)
        """
        try:
            record = self.users.find_by_login(login)
        except StoreError as e:
            log.error("[-] Lookup of %s failed: %s", login, e)
            return False, "Storage unavailable"

        if record is None:
            return False, "No such user"

        if not self.hasher.verify(record.passhash, password):
            log.warning("[-] Wrong password for %s", login)
            return False, "Invalid password"

        return True, ""

    def exists(self, login: str) -> bool:
        """True if `login` is registered. Raises StoreError if the store is unavailable."""
        return self.users.exists(login)
