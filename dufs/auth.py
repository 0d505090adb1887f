"""Access rules, HTTP Basic/Digest authentication and nonce handling."""

from __future__ import annotations

import base64
import binascii
import copy
import enum
import hashlib
import hmac
import os
import string
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from passlib.hash import sha512_crypt

REALM = "DUFS"
DIGEST_AUTH_TIMEOUT = 604800  # 7 days

_NONCE_SEED = hashlib.md5(uuid.uuid4().bytes + (os.getpid() & 0xFFFFFFFF).to_bytes(4, "big"))

_READONLY_METHODS = frozenset({"GET", "OPTIONS", "HEAD", "PROPFIND", "CHECKAUTH", "LOGOUT"})


class AccessPerm(enum.IntEnum):
    """Permission level of a path, ordered from weakest to strongest."""

    INDEX_ONLY = 0
    READ_ONLY = 1
    READ_WRITE = 2

    def indexonly(self) -> bool:
        return self is AccessPerm.INDEX_ONLY

    def readwrite(self) -> bool:
        return self is AccessPerm.READ_WRITE


@dataclass
class AccessPaths:
    """A tree of path segments, each carrying a permission."""

    perm: AccessPerm = AccessPerm.INDEX_ONLY
    children: dict[str, AccessPaths] = field(default_factory=dict)

    def raise_perm(self, perm: AccessPerm) -> None:
        """Raise this node's permission, dropping children it now covers."""
        if self.perm < perm:
            self.perm = perm
            self._purge_children(perm)

    def merge(self, paths: str) -> None:
        """Add a comma separated list of `path[:ro|:rw]` items.

        Raises ValueError on an unknown permission suffix.
        """
        for item in paths.strip(",").split(","):
            path, sep, perm_text = item.partition(":")
            if not sep or perm_text == "ro":
                perm = AccessPerm.READ_ONLY
            elif perm_text == "rw":
                perm = AccessPerm.READ_WRITE
            else:
                raise ValueError(f"Invalid access path `{item}`")
            self.add(path, perm)

    def guard(self, path: str, method: str) -> AccessPaths | None:
        """Return the access node for `path` if `method` is permitted there."""
        target = self.find(path)
        if target is None:
            return None
        if not is_readonly_method(method) and not target.perm.readwrite():
            return None
        return target

    def add(self, path: str, perm: AccessPerm) -> None:
        path = path.strip("/")
        if not path:
            self.raise_perm(perm)
        else:
            self._add_parts(path.split("/"), perm)

    def find(self, path: str) -> AccessPaths | None:
        parts = [part for part in path.strip("/").split("/") if part]
        return self._find_parts(parts, self.perm)

    def child_names(self) -> list[str]:
        return list(self.children)

    def entry_paths(self, base: Path | str) -> list[Path]:
        """Paths below `base` that grant more than index-only access."""
        base = Path(base)
        if not self.perm.indexonly():
            return [base]
        return list(self._iter_entry_paths(base))

    def _iter_entry_paths(self, base: Path) -> Iterator[Path]:
        for name, child in self.children.items():
            child_base = base / name
            if child.perm.indexonly():
                yield from child._iter_entry_paths(child_base)
            else:
                yield child_base

    def _purge_children(self, perm: AccessPerm) -> None:
        self.children = {
            name: child for name, child in self.children.items() if child.perm > perm
        }
        for child in self.children.values():
            child._purge_children(perm)

    def _add_parts(self, parts: list[str], perm: AccessPerm) -> None:
        if not parts:
            self.raise_perm(perm)
            return
        if self.perm >= perm:
            return
        child = self.children.setdefault(parts[0], AccessPaths())
        child._add_parts(parts[1:], perm)

    def _find_parts(self, parts: list[str], perm: AccessPerm) -> AccessPaths | None:
        if not self.perm.indexonly():
            perm = self.perm
        if not parts:
            return copy.deepcopy(self) if perm.indexonly() else AccessPaths(perm)
        child = self.children.get(parts[0])
        if child is None:
            return None if perm.indexonly() else AccessPaths(perm)
        return child._find_parts(parts[1:], perm)


def _anonymous_default() -> AccessPaths | None:
    return AccessPaths(AccessPerm.READ_WRITE)


@dataclass
class AccessControl:
    """Users with their passwords and access trees, plus anonymous access."""

    use_hashed_password: bool = False
    users: dict[str, tuple[str, AccessPaths]] = field(default_factory=dict)
    anonymous: AccessPaths | None = field(default_factory=_anonymous_default)

    @classmethod
    def from_rules(cls, raw_rules: Iterable[str]) -> AccessControl:
        """Build from rules such as `user:pass@/dir1:rw,/dir2` or `@/`.

        Raises ValueError on a malformed rule.
        """
        raw_rules = list(raw_rules)
        if not raw_rules:
            return cls()
        anonymous_paths: str | None = None
        accounts: list[tuple[str, str, str]] = []
        for rule in split_rules(raw_rules):
            split = split_account_paths(rule)
            if split is None:
                raise ValueError(f"Invalid auth `{rule}`")
            account, paths = split
            if not account:
                if anonymous_paths is not None:
                    raise ValueError("Invalid auth, no duplicate anonymous rules")
                anonymous_paths = paths
            elif ":" in account:
                user, _, stored = account.partition(":")
                if not user or not stored:
                    raise ValueError(f"Invalid auth `{rule}`")
                accounts.append((user, stored, paths))

        anonymous = None
        if anonymous_paths is not None:
            anonymous = AccessPaths()
            try:
                anonymous.merge(anonymous_paths)
            except ValueError as exc:
                raise ValueError(f"Invalid auth value `@{anonymous_paths}`") from exc

        use_hashed_password = False
        users: dict[str, tuple[str, AccessPaths]] = {}
        for user, stored, paths in accounts:
            access_paths = AccessPaths()
            try:
                access_paths.merge(paths)
            except ValueError as exc:
                raise ValueError(f"Invalid auth value `{user}:{stored}@{paths}`") from exc
            if anonymous_paths is not None:
                access_paths.merge(anonymous_paths)
            if stored.startswith("$6$"):
                use_hashed_password = True
            users[user] = (stored, access_paths)

        return cls(use_hashed_password=use_hashed_password, users=users, anonymous=anonymous)

    def exist(self) -> bool:
        return bool(self.users)

    def guard(
        self,
        path: str,
        method: str,
        authorization: str | bytes | None,
        guard_options: bool,
    ) -> tuple[str | None, AccessPaths | None]:
        """Return the authenticated user (if any) and the access granted."""
        if not self.users:
            return None, AccessPaths(AccessPerm.READ_WRITE)
        if authorization is not None:
            user = get_auth_user(authorization)
            if user is not None and user in self.users:
                stored, access_paths = self.users[user]
                if method == "OPTIONS":
                    return user, AccessPaths(AccessPerm.READ_ONLY)
                if check_auth(authorization, method, user, stored):
                    return user, access_paths.guard(path, method)
            return None, None

        if not guard_options and method == "OPTIONS":
            return None, AccessPaths(AccessPerm.READ_ONLY)

        if self.anonymous is not None:
            return None, self.anonymous.guard(path, method)

        return None, None


def www_authenticate(access_control: AccessControl) -> list[str]:
    """WWW-Authenticate header values to send with a 401 response."""
    basic = f'Basic realm="{REALM}"'
    if access_control.use_hashed_password:
        return [basic]
    digest = f'Digest realm="{REALM}", nonce="{create_nonce()}", qop="auth"'
    return [digest, basic]


def _to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    try:
        return value.encode("latin-1")
    except UnicodeEncodeError:
        return value.encode("utf-8")


def _decode_basic(value: bytes) -> str | None:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def get_auth_user(authorization: str | bytes) -> str | None:
    """The user name an Authorization header claims, without checking it."""
    raw = _to_bytes(authorization)
    if raw.startswith(b"Basic "):
        decoded = _decode_basic(raw[len(b"Basic "):])
        if decoded is None:
            return None
        return decoded.split(":")[0]
    if raw.startswith(b"Digest "):
        try:
            params = parse_header_params(raw[len(b"Digest "):])
            username = params[b"username"]
            return username.decode("utf-8")
        except (ValueError, KeyError):
            return None
    return None


def check_auth(
    authorization: str | bytes, method: str, auth_user: str, auth_pass: str
) -> bool:
    """Whether the Authorization header proves `auth_user` with `auth_pass`."""
    raw = _to_bytes(authorization)
    if raw.startswith(b"Basic "):
        decoded = _decode_basic(raw[len(b"Basic "):])
        if decoded is None or ":" not in decoded:
            return False
        user, _, given = decoded.partition(":")
        if user != auth_user:
            return False
        if auth_pass.startswith("$6$"):
            try:
                return bool(sha512_crypt.verify(given, auth_pass))
            except (ValueError, TypeError):
                return False
        return given == auth_pass

    if raw.startswith(b"Digest "):
        return _check_digest(raw[len(b"Digest "):], method, auth_user, auth_pass)

    return False


def _check_digest(value: bytes, method: str, auth_user: str, auth_pass: str) -> bool:
    try:
        params = parse_header_params(value)
    except ValueError:
        return False
    try:
        username = params[b"username"].decode("utf-8")
    except (KeyError, UnicodeDecodeError):
        return False
    nonce = params.get(b"nonce")
    user_response = params.get(b"response")
    if nonce is None or user_response is None:
        return False
    try:
        if not validate_nonce(nonce):
            return False
    except ValueError:
        return False
    if auth_user != username:
        return False

    ha1 = hashlib.md5(f"{auth_user}:{REALM}:{auth_pass}".encode()).hexdigest().encode()
    ha2 = hashlib.md5(method.encode() + b":" + params.get(b"uri", b"")).hexdigest().encode()

    qop = params.get(b"qop")
    if qop in (b"auth", b"auth-int"):
        pieces = [ha1, nonce, params.get(b"nc", b""), params.get(b"cnonce", b""), qop, ha2]
    else:
        pieces = [ha1, nonce, ha2]
    correct = hashlib.md5(b":".join(pieces)).hexdigest().encode()
    return hmac.compare_digest(correct, user_response)


def _now_secs() -> int:
    return int(time.time()) & 0xFFFFFFFF


def _nonce_hash(secs: int) -> str:
    digest = _NONCE_SEED.copy()
    digest.update(secs.to_bytes(4, "big"))
    return digest.hexdigest()


def create_nonce() -> str:
    """A 34 character nonce: hex timestamp followed by a keyed hash of it."""
    secs = _now_secs()
    return f"{secs:08x}{_nonce_hash(secs)}"[:34]


def validate_nonce(nonce: str | bytes) -> bool:
    """Whether a nonce is still fresh.

    Raises ValueError if the nonce was never issued by this process.
    """
    raw = _to_bytes(nonce)
    if len(raw) != 34:
        raise ValueError("invalid nonce")
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError("invalid nonce") from exc
    stamp = text[:8]
    if all(char in string.hexdigits for char in stamp):
        secs_nonce = int(stamp, 16)
        elapsed = _now_secs() - secs_nonce
        if elapsed >= 0 and _nonce_hash(secs_nonce)[:26] == text[8:34]:
            return elapsed < DIGEST_AUTH_TIMEOUT
    raise ValueError("invalid nonce")


def is_readonly_method(method: str) -> bool:
    return method in _READONLY_METHODS


def parse_header_params(header: str | bytes) -> dict[bytes, bytes]:
    """Parse `key=value, key="quoted, value"` pairs of an auth header.

    Raises ValueError on an empty key or value.
    """
    header = _to_bytes(header)
    separators: list[int] = []
    assigns: list[int] = []
    quoted = False
    for position, char in enumerate(header):
        if char == ord('"'):
            quoted = not quoted
        elif not quoted and char == ord("="):
            assigns.append(position)
        elif not quoted and char == ord(","):
            separators.append(position)
    separators.append(len(header))

    result: dict[bytes, bytes] = {}
    start = 0
    for end, assign in zip(separators, assigns):
        while start < len(header) and header[start] == ord(" "):
            start += 1
        if assign <= start or end <= assign + 1:
            raise ValueError("keys and values must contain one char")
        key = header[start:assign]
        if header[assign + 1] == ord('"') and header[end - 1] == ord('"'):
            if end - 1 <= assign + 1:
                raise ValueError("unterminated quoted value")
            value = header[assign + 2:end - 1]
        else:
            value = header[assign + 1:end]
        result[key] = value
        start = end + 1
    return result


def split_account_paths(s: str) -> tuple[str, str] | None:
    """Split a rule at its first `@/` into account and paths."""
    index = s.find("@/")
    if index < 0:
        return None
    return s[:index], s[index + 1:]


def split_rules(rules: Iterable[str]) -> list[str]:
    """Split `|`-joined rules, keeping `|` that belongs to a password."""
    output: list[str] = []
    for rule in rules:
        parts = rule.split("|")
        last = len(parts) - 1
        pending = ""
        for index, part in enumerate(parts):
            if "@/" in part:
                output.append(pending + part)
                pending = ""
                continue
            pending += part
            if index < last:
                pending += "|"
        if pending:
            output.append(pending)
    return output