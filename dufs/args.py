"""Command-line and configuration-file settings for the file server."""

from __future__ import annotations

import argparse
import enum
import ipaddress
import os
import zipfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import total_ordering
from pathlib import Path
from typing import Any, Callable
from urllib.parse import quote

import yaml

from dufs.auth import AccessControl
from dufs.http_logger import HttpLogger

PROG = "dufs"
VERSION = "0.43.0"
DESCRIPTION = "Dufs is a distinctive utility file server"
DEFAULT_PORT = 5000

_SUPPORTS_SOCKET_PATHS = os.name == "posix"

IpAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class Compress(enum.Enum):
    """Compression level used for folder archives."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def to_compression(self) -> int:
        """The zipfile compression method for this level."""
        return _COMPRESSION_METHODS[self]


_COMPRESSION_METHODS = {
    Compress.NONE: zipfile.ZIP_STORED,
    Compress.LOW: zipfile.ZIP_DEFLATED,
    Compress.MEDIUM: zipfile.ZIP_BZIP2,
    Compress.HIGH: zipfile.ZIP_LZMA,
}


@total_ordering
@dataclass(frozen=True)
class BindAddr:
    """An address to listen on: an IP address or a unix socket path."""

    ip: IpAddress | None = None
    socket_path: str | None = None

    def __post_init__(self) -> None:
        if (self.ip is None) == (self.socket_path is None):
            raise ValueError("BindAddr needs exactly one of ip or socket_path")

    @classmethod
    def parse_addrs(cls, addrs: Iterable[str]) -> list[BindAddr]:
        """Parse addresses; anything that is not an IP is a socket path.

        Where unix sockets are unavailable, non-IP values raise ValueError.
        """
        parsed: list[BindAddr] = []
        invalid: list[str] = []
        for addr in addrs:
            try:
                parsed.append(cls(ip=ipaddress.ip_address(addr)))
            except ValueError:
                if _SUPPORTS_SOCKET_PATHS:
                    parsed.append(cls(socket_path=addr))
                else:
                    invalid.append(addr)
        if invalid:
            raise ValueError(f"Invalid bind address `{','.join(invalid)}`")
        return parsed

    def _sort_key(self) -> tuple[int, int, Any]:
        if self.ip is not None:
            return (0, self.ip.version, int(self.ip))
        return (1, 0, self.socket_path)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, BindAddr):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        return str(self.ip) if self.ip is not None else str(self.socket_path)


def default_addrs() -> list[BindAddr]:
    return BindAddr.parse_addrs(["0.0.0.0", "::"])


def encode_uri(value: str) -> str:
    """Percent-encode each `/`-separated segment of a path."""
    return "/".join(quote(part, safe="") for part in value.split("/"))


def _parse_port(value: int | str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid port `{value}`")
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid port `{value}`") from exc
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"invalid port `{value}`")
    return port


def _expect_str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"invalid type for `{key}`: expected a string")
    return value


def _expect_str_list(key: str, value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    raise ValueError(f"invalid type for `{key}`: expected string or list of strings")


def _expect_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"invalid type for `{key}`: expected a boolean")
    return value


def _expect_path(key: str, value: Any) -> Path:
    return Path(_expect_str(key, value))


def _optional_path(key: str, value: Any) -> Path | None:
    return None if value is None else _expect_path(key, value)


def _config_port(key: str, value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"invalid type for `{key}`: expected an integer")
    return _parse_port(value)


def _config_bind(key: str, value: Any) -> list[BindAddr]:
    return BindAddr.parse_addrs(_expect_str_list(key, value))


def _config_auth(key: str, value: Any) -> AccessControl:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"invalid type for `{key}`: expected a list of strings")
    return AccessControl.from_rules(value)


def _config_log_format(key: str, value: Any) -> HttpLogger:
    return HttpLogger.parse(_expect_str(key, value))


def _config_compress(key: str, value: Any) -> Compress:
    text = _expect_str(key, value)
    try:
        return Compress(text)
    except ValueError as exc:
        raise ValueError(f"invalid value `{text}` for `{key}`") from exc


_CONFIG_FIELDS: dict[str, tuple[str, Callable[[str, Any], Any]]] = {
    "serve-path": ("serve_path", _expect_path),
    "bind": ("addrs", _config_bind),
    "port": ("port", _config_port),
    "path-prefix": ("path_prefix", _expect_str),
    "hidden": ("hidden", _expect_str_list),
    "auth": ("auth", _config_auth),
    "allow-all": ("allow_all", _expect_bool),
    "allow-upload": ("allow_upload", _expect_bool),
    "allow-delete": ("allow_delete", _expect_bool),
    "allow-search": ("allow_search", _expect_bool),
    "allow-symlink": ("allow_symlink", _expect_bool),
    "allow-archive": ("allow_archive", _expect_bool),
    "render-index": ("render_index", _expect_bool),
    "render-spa": ("render_spa", _expect_bool),
    "render-try-index": ("render_try_index", _expect_bool),
    "enable-cors": ("enable_cors", _expect_bool),
    "assets": ("assets", _optional_path),
    "log-format": ("http_logger", _config_log_format),
    "log-file": ("log_file", _optional_path),
    "compress": ("compress", _config_compress),
    "tls-cert": ("tls_cert", _optional_path),
    "tls-key": ("tls_key", _optional_path),
}


def _env(name: str) -> str | None:
    value = os.environ.get(name)
    return value or None


def _option(namespace: Any, dest: str, env: str) -> Any:
    value = getattr(namespace, dest, None)
    return value if value is not None else _env(env)


def _many(namespace: Any, dest: str, env: str, split: bool) -> list[str] | None:
    values = getattr(namespace, dest, None)
    if not values:
        env_value = _env(env)
        if env_value is None:
            return None
        values = [env_value]
    if split:
        return [piece for value in values for piece in value.split(",")]
    return list(values)


def _flag(namespace: Any, dest: str, env: str) -> bool:
    if getattr(namespace, dest, False):
        return True
    value = _env(env)
    if value is None:
        return False
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValueError(f"invalid value `{value}` for `{env}`")


def sanitize_path(path: str | os.PathLike[str]) -> Path:
    """The absolute, resolved form of an existing path.

    Raises FileNotFoundError if it does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Path `{path}` doesn't exist")
    try:
        return (Path.cwd() / path).resolve(strict=True)
    except OSError as exc:
        raise OSError(f"Failed to access path `{path}`") from exc


def sanitize_assets_path(path: str | os.PathLike[str]) -> Path:
    """Like sanitize_path, but the directory must hold an index.html."""
    resolved = sanitize_path(path)
    if not (resolved / "index.html").exists():
        raise ValueError(f"Path `{resolved}` doesn't contains index.html")
    return resolved


@dataclass
class Args:
    """The settings the server runs with."""

    serve_path: Path = field(default_factory=lambda: Path("."))
    addrs: list[BindAddr] = field(default_factory=default_addrs)
    port: int = DEFAULT_PORT
    path_is_file: bool = False
    path_prefix: str = ""
    uri_prefix: str = ""
    hidden: list[str] = field(default_factory=list)
    auth: AccessControl = field(default_factory=AccessControl)
    allow_all: bool = False
    allow_upload: bool = False
    allow_delete: bool = False
    allow_search: bool = False
    allow_symlink: bool = False
    allow_archive: bool = False
    render_index: bool = False
    render_spa: bool = False
    render_try_index: bool = False
    enable_cors: bool = False
    assets: Path | None = None
    http_logger: HttpLogger = field(default_factory=HttpLogger.default)
    log_file: Path | None = None
    compress: Compress = Compress.LOW
    tls_cert: Path | None = None
    tls_key: Path | None = None

    @classmethod
    def from_config(cls, data: Mapping[str, Any] | None) -> Args:
        """Settings from a loaded configuration document with kebab-case keys.

        Unknown keys are ignored; a value of the wrong kind raises ValueError.
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError("configuration must be a mapping")
        values = {
            attr: convert(key, data[key])
            for key, (attr, convert) in _CONFIG_FIELDS.items()
            if key in data
        }
        return cls(**values)

    @classmethod
    def _load_config(cls, path: Path) -> Args:
        try:
            contents = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise OSError(f"Failed to read config at {path}") from exc
        try:
            return cls.from_config(yaml.safe_load(contents))
        except (yaml.YAMLError, ValueError) as exc:
            raise ValueError(f"Failed to load config at {path}: {exc}") from exc

    @classmethod
    def from_cli(cls, namespace: Any) -> Args:
        """Settings from parsed options, environment and configuration file.

        Options given on the command line win over environment variables,
        which win over the configuration file.
        """
        config_path = _option(namespace, "config", "DUFS_CONFIG")
        args = cls._load_config(Path(config_path)) if config_path else cls()

        serve_path = _option(namespace, "serve_path", "DUFS_SERVE_PATH")
        if serve_path is not None:
            args.serve_path = Path(serve_path)
        args.serve_path = sanitize_path(args.serve_path)

        port = _option(namespace, "port", "DUFS_PORT")
        if port is not None:
            args.port = _parse_port(port)

        binds = _many(namespace, "bind", "DUFS_BIND", split=True)
        if binds is not None:
            args.addrs = BindAddr.parse_addrs(binds)

        args.path_is_file = args.serve_path.is_file()

        path_prefix = _option(namespace, "path_prefix", "DUFS_PATH_PREFIX")
        if path_prefix is not None:
            args.path_prefix = path_prefix
        args.path_prefix = args.path_prefix.strip("/")
        args.uri_prefix = f"/{encode_uri(args.path_prefix)}/" if args.path_prefix else "/"

        hidden = _many(namespace, "hidden", "DUFS_HIDDEN", split=True)
        if hidden is not None:
            args.hidden = hidden
        else:
            args.hidden = [piece for item in args.hidden for piece in item.split(",")]

        args.enable_cors = args.enable_cors or _flag(namespace, "enable_cors", "DUFS_ENABLE_CORS")

        rules = _many(namespace, "auth", "DUFS_AUTH", split=False)
        if rules is not None:
            args.auth = AccessControl.from_rules(rules)

        args.allow_all = args.allow_all or _flag(namespace, "allow_all", "DUFS_ALLOW_ALL")
        allow_all = args.allow_all
        for name in ("upload", "delete", "search", "symlink", "archive"):
            attr = f"allow_{name}"
            if not getattr(args, attr):
                setattr(
                    args,
                    attr,
                    allow_all or _flag(namespace, attr, f"DUFS_ALLOW_{name.upper()}"),
                )

        for attr in ("render_index", "render_try_index", "render_spa"):
            if not getattr(args, attr):
                setattr(args, attr, _flag(namespace, attr, f"DUFS_{attr.upper()}"))

        assets = _option(namespace, "assets", "DUFS_ASSETS")
        if assets is not None:
            args.assets = Path(assets)
        if args.assets is not None:
            args.assets = sanitize_assets_path(args.assets)

        log_format = _option(namespace, "log_format", "DUFS_LOG_FORMAT")
        if log_format is not None:
            args.http_logger = HttpLogger.parse(log_format)

        log_file = _option(namespace, "log_file", "DUFS_LOG_FILE")
        if log_file is not None:
            args.log_file = Path(log_file)

        compress = _option(namespace, "compress", "DUFS_COMPRESS")
        if compress is not None:
            args.compress = _config_compress("compress", compress)

        tls_cert = _option(namespace, "tls_cert", "DUFS_TLS_CERT")
        if tls_cert is not None:
            args.tls_cert = Path(tls_cert)
        tls_key = _option(namespace, "tls_key", "DUFS_TLS_KEY")
        if tls_key is not None:
            args.tls_key = Path(tls_key)
        if args.tls_cert is not None and args.tls_key is None:
            raise ValueError("No tls-key set")
        if args.tls_key is not None and args.tls_cert is None:
            raise ValueError("No tls-cert set")

        return args


def build_cli() -> argparse.ArgumentParser:
    """The command-line parser."""
    parser = argparse.ArgumentParser(prog=PROG, description=DESCRIPTION)
    parser.add_argument("-V", "--version", action="version", version=f"{PROG} {VERSION}")
    parser.add_argument(
        "serve_path", nargs="?", metavar="serve-path",
        help="Specific path to serve [default: .]",
    )
    parser.add_argument("-c", "--config", metavar="file", help="Specify configuration file")
    parser.add_argument(
        "-b", "--bind", action="append", metavar="addrs",
        help="Specify bind address or unix socket",
    )
    parser.add_argument(
        "-p", "--port", type=_parse_port, metavar="port",
        help=f"Specify port to listen on [default: {DEFAULT_PORT}]",
    )
    parser.add_argument("--path-prefix", metavar="path", help="Specify a path prefix")
    parser.add_argument(
        "--hidden", action="append", metavar="value",
        help="Hide paths from directory listings, e.g. tmp,*.log,*.lock",
    )
    parser.add_argument(
        "-a", "--auth", action="append", metavar="rules",
        help="Add auth roles, e.g. user:pass@/dir1:rw,/dir2",
    )
    parser.add_argument(
        "--auth-method", choices=["basic", "digest"], default="digest",
        help=argparse.SUPPRESS,
    )
    flags = [
        (("-A", "--allow-all"), "Allow all operations"),
        (("--allow-upload",), "Allow upload files/folders"),
        (("--allow-delete",), "Allow delete files/folders"),
        (("--allow-search",), "Allow search files/folders"),
        (("--allow-symlink",), "Allow symlink to files/folders outside root directory"),
        (("--allow-archive",), "Allow download folders as archive file"),
        (("--enable-cors",), "Enable CORS, sets `Access-Control-Allow-Origin: *`"),
        (
            ("--render-index",),
            "Serve index.html when requesting a directory, "
            "returns 404 if not found index.html",
        ),
        (
            ("--render-try-index",),
            "Serve index.html when requesting a directory, "
            "returns directory listing if not found index.html",
        ),
        (("--render-spa",), "Serve SPA(Single Page Application)"),
    ]
    for names, help_text in flags:
        parser.add_argument(*names, action="store_true", help=help_text)
    parser.add_argument(
        "--assets", metavar="path",
        help="Set the path to the assets directory for overriding the built-in assets",
    )
    parser.add_argument("--log-format", metavar="format", help="Customize http log format")
    parser.add_argument(
        "--log-file", metavar="file",
        help="Specify the file to save logs to, other than stdout/stderr",
    )
    parser.add_argument(
        "--compress", choices=[level.value for level in Compress], metavar="level",
        help="Set zip compress level [default: low]",
    )
    parser.add_argument(
        "--tls-cert", metavar="path",
        help="Path to an SSL/TLS certificate to serve with HTTPS",
    )
    parser.add_argument(
        "--tls-key", metavar="path", help="Path to the SSL/TLS certificate's private key"
    )
    return parser


def parse_args(argv: list[str] | None = None) -> Args:
    """Parse the command line (and configuration) into settings."""
    namespace = build_cli().parse_args(argv)
    return Args.from_cli(namespace)