"""Basic-auth validation of users whose passwords are stored as PBKDF2 hashes."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
import re
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

_DEFAULT_HASH_NAME = "SHA512"
_DEFAULT_ITERATIONS = 100000
_DEFAULT_KEY_LENGTH = 512
_SALT_SIZE = 64
_INTEGER = re.compile(r"[+-]?\d+")

_HASH_FUNCTIONS = {
    "sha256": "sha256",
    "sha224": "sha224",
    "sha384": "sha384",
    "sha512": "sha512",
    "sha3_224": "sha3_224",
    "sha3_256": "sha3_256",
    "sha3_384": "sha3_384",
    "sha3_512": "sha3_512",
}


class AuthError(Exception):
    """Raised when credentials cannot be hashed or looked up."""


@dataclass
class UserCredentials:
    """A stored user with the parameters its password hash was made with."""

    username: str = ""
    password: str = ""
    salt: str = ""
    iterations: int = 0
    key_len: int = 0
    hash_function: str = ""


class _CredsHandler(Protocol):
    def get_pass_from_db(self, username: str) -> str: ...

    def get_hashed_pass(self, password: str) -> str: ...


class _HashGenerator(Protocol):
    def get_creds_from_db(self, username: str) -> UserCredentials: ...

    def decode_salt_value(self, salt: str) -> bytes: ...

    def gen_hash_value(
        self, value: bytes, salt: bytes, iterations: int, key_len: int, hash_name: str
    ) -> str: ...


def _parse_int(text: str) -> int | None:
    return int(text) if _INTEGER.fullmatch(text) else None


def _pbkdf2(hash_name: str, value: bytes, salt: bytes, iterations: int, key_len: int) -> bytes:
    try:
        return hashlib.pbkdf2_hmac(hash_name, value, salt, iterations, key_len)
    except ValueError:
        pass
    digest_size = hashlib.new(hash_name).digest_size
    blocks = []
    for block_index in range(1, -(-key_len // digest_size) + 1):
        mac = hmac.new(value, salt + block_index.to_bytes(4, "big"), hash_name).digest()
        block = int.from_bytes(mac, "big")
        for _ in range(iterations - 1):
            mac = hmac.new(value, mac, hash_name).digest()
            block ^= int.from_bytes(mac, "big")
        blocks.append(block.to_bytes(digest_size, "big"))
    return b"".join(blocks)[:key_len]


def get_valid_hash_function(hash_str: str) -> str | None:
    """Return the hashlib name for a configured hash function, or None if unsupported."""
    return _HASH_FUNCTIONS.get(hash_str.lower())


@dataclass
class Pbkdf2Caller:
    """PBKDF2 primitives plus the user lookup and defaults taken from the environment."""

    find_user: Callable[[Mapping[str, Any]], UserCredentials] | None = None

    def get_creds_from_db(self, username: str) -> UserCredentials:
        """Look up the stored credentials of ``username``."""
        if self.find_user is None:
            raise AuthError("No user store configured")
        return self.find_user({"username": username})

    def decode_salt_value(self, salt: str) -> bytes:
        """Decode a base64 salt."""
        try:
            return base64.b64decode(salt, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AuthError(f"Invalid salt: {exc}") from exc

    def gen_hash_value(
        self, value: bytes, salt: bytes, iterations: int, key_len: int, hash_name: str
    ) -> str:
        """Return the base64 PBKDF2 key of ``value``."""
        return base64.b64encode(_pbkdf2(hash_name, value, salt, iterations, key_len)).decode("ascii")

    def generate_salt(self) -> str:
        """Return a fresh random base64 salt."""
        return base64.b64encode(secrets.token_bytes(_SALT_SIZE)).decode("ascii")

    def get_hash_name(self) -> str:
        """Return the default hash function name."""
        return os.environ.get("HUSKYCI_API_DEFAULT_HASH_FUNCTION") or _DEFAULT_HASH_NAME

    def get_iterations(self) -> int:
        """Return the default number of PBKDF2 iterations."""
        parsed = _parse_int(os.environ.get("HUSKYCI_API_DEFAULT_ITERATIONS", ""))
        return _DEFAULT_ITERATIONS if parsed is None else parsed

    def get_key_length(self) -> int:
        """Return the default PBKDF2 key length."""
        parsed = _parse_int(os.environ.get("HUSKYCI_API_DEFAULT_KEY_LENGTH", ""))
        return _DEFAULT_KEY_LENGTH if parsed is None else parsed


@dataclass
class ClientPbkdf2:
    """Hashes candidate passwords with the parameters of a stored user."""

    hash_gen: _HashGenerator
    salt: str = ""
    iterations: int = 0
    key_len: int = 0
    hash_function: str = ""

    def get_pass_from_db(self, username: str) -> str:
        """Load the user's hash parameters and return the stored hash."""
        creds = self.hash_gen.get_creds_from_db(username)
        self.hash_function = creds.hash_function
        self.iterations = creds.iterations
        self.key_len = creds.key_len
        self.salt = creds.salt
        return creds.password

    def get_hashed_pass(self, password: str) -> str:
        """Hash ``password`` with the loaded parameters."""
        hash_name = get_valid_hash_function(self.hash_function)
        if not self.salt or self.iterations == 0 or self.key_len == 0 or hash_name is None:
            raise AuthError("Failed to generate a hash! It doesn't meet all criteria")
        salt = self.hash_gen.decode_salt_value(self.salt)
        return self.hash_gen.gen_hash_value(
            password.encode(), salt, self.iterations, self.key_len, hash_name
        )


@dataclass
class BasicAuthValidator:
    """Checks a username and password against the stored hash."""

    client_handler: _CredsHandler

    def is_valid_user(self, username: str, password: str) -> bool:
        """Return whether the password matches; an unknown user is simply invalid."""
        try:
            stored = self.client_handler.get_pass_from_db(username)
        except Exception:
            return False
        hashed = self.client_handler.get_hashed_pass(password)
        return hmac.compare_digest(stored.encode(), hashed.encode())


def validate_user(
    username: str,
    password: str,
    find_user: Callable[[Mapping[str, Any]], UserCredentials],
) -> bool:
    """Validate basic-auth credentials against users returned by ``find_user``."""
    client = ClientPbkdf2(hash_gen=Pbkdf2Caller(find_user=find_user))
    return BasicAuthValidator(client_handler=client).is_valid_user(username, password)