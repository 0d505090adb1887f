import ipaddress
import os
import zipfile
from pathlib import Path

import pytest

from dufs.args import (
    Args,
    BindAddr,
    Compress,
    build_cli,
    default_addrs,
    encode_uri,
    parse_args,
    sanitize_assets_path,
    sanitize_path,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith("DUFS_"):
            monkeypatch.delenv(name)
    work = tmp_path / "cwd"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


@pytest.fixture
def serve_dir(tmp_path):
    path = tmp_path / "serve"
    path.mkdir()
    return path


def ip(value):
    return BindAddr(ip=ipaddress.ip_address(value))


def test_default():
    args = parse_args([])
    assert args.serve_path == sanitize_path(Path.cwd())
    assert args.port == 5000
    assert args.addrs == default_addrs()
    assert args.uri_prefix == "/"
    assert args.compress is Compress.LOW


def test_args_from_cli1(serve_dir):
    args = parse_args(["--hidden", "tmp,*.log,*.lock", str(serve_dir)])
    assert args.serve_path == sanitize_path(serve_dir)
    assert args.hidden == ["tmp", "*.log", "*.lock"]


def test_args_from_cli2():
    args = parse_args(["--hidden", "tmp", "--hidden", "*.log", "--hidden", "*.lock"])
    assert args.hidden == ["tmp", "*.log", "*.lock"]


def test_args_from_empty_config_file(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("")
    args = parse_args(["-c", str(config_file)])
    assert args.serve_path == sanitize_path(Path.cwd())
    assert args.port == 5000
    assert args.addrs == default_addrs()


def test_args_from_config_file1(tmp_path, serve_dir):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        f"""
serve-path: '{serve_dir}'
bind: 0.0.0.0
port: 3000
allow-upload: true
hidden: tmp,*.log,*.lock
"""
    )
    args = parse_args(["-c", str(config_file)])
    assert args.serve_path == sanitize_path(serve_dir)
    assert args.addrs == [ip("0.0.0.0")]
    assert args.hidden == ["tmp", "*.log", "*.lock"]
    assert args.port == 3000
    assert args.allow_upload is True


def test_args_from_config_file2(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        """
bind:
  - 127.0.0.1
  - 192.168.8.10
hidden:
  - tmp
  - '*.log'
  - '*.lock'
"""
    )
    args = parse_args(["-c", str(config_file)])
    assert args.addrs == [ip("127.0.0.1"), ip("192.168.8.10")]
    assert args.hidden == ["tmp", "*.log", "*.lock"]


def test_cli_overrides_config(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("port: 3000\n")
    args = parse_args(["-c", str(config_file), "-p", "4000"])
    assert args.port == 4000


def test_config_invalid_port(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("port: 70000\n")
    with pytest.raises(ValueError, match="Failed to load config"):
        parse_args(["-c", str(config_file)])


def test_config_missing_file(tmp_path):
    with pytest.raises(OSError, match="Failed to read config"):
        parse_args(["-c", str(tmp_path / "missing.yaml")])


def test_config_auth_list(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("auth:\n  - user:password@/:rw\n")
    args = parse_args(["-c", str(config_file)])
    assert args.auth.exist() is True
    assert args.auth.users["user"][0] == "password"


def test_from_config_none_is_default():
    assert Args.from_config(None) == Args()


def test_from_config_rejects_wrong_type():
    with pytest.raises(ValueError, match="allow-upload"):
        Args.from_config({"allow-upload": "yes"})


def test_cli_auth_rules():
    args = parse_args(["-a", "user:password@/dir1:rw,/dir2"])
    assert args.auth.exist() is True
    assert args.auth.users["user"][0] == "password"


def test_cli_invalid_auth():
    with pytest.raises(ValueError, match="Invalid auth"):
        parse_args(["-a", "nobody"])


def test_allow_all_sets_every_permission():
    args = parse_args(["-A"])
    assert (
        args.allow_upload,
        args.allow_delete,
        args.allow_search,
        args.allow_symlink,
        args.allow_archive,
    ) == (True, True, True, True, True)


def test_single_allow_flag():
    args = parse_args(["--allow-upload"])
    assert args.allow_upload is True
    assert args.allow_delete is False


@pytest.mark.parametrize(
    "prefix, path_prefix, uri_prefix",
    [("xyz", "xyz", "/xyz/"), ("/prefix/", "prefix", "/prefix/"), ("a b", "a b", "/a%20b/")],
)
def test_path_prefix(prefix, path_prefix, uri_prefix):
    args = parse_args(["--path-prefix", prefix])
    assert args.path_prefix == path_prefix
    assert args.uri_prefix == uri_prefix


def test_bind_comma_separated():
    args = parse_args(["-b", "127.0.0.1,::1"])
    assert args.addrs == [ip("127.0.0.1"), ip("::1")]


def test_invalid_port_exits():
    with pytest.raises(SystemExit):
        parse_args(["-p", "70000"])


def test_compress_option():
    assert parse_args(["--compress", "high"]).compress is Compress.HIGH
    with pytest.raises(SystemExit):
        parse_args(["--compress", "ultra"])


@pytest.mark.parametrize(
    "level, method",
    [
        (Compress.NONE, zipfile.ZIP_STORED),
        (Compress.LOW, zipfile.ZIP_DEFLATED),
        (Compress.MEDIUM, zipfile.ZIP_BZIP2),
        (Compress.HIGH, zipfile.ZIP_LZMA),
    ],
)
def test_to_compression(level, method):
    assert level.to_compression() == method


def test_tls_cert_without_key():
    with pytest.raises(ValueError, match="No tls-key set"):
        parse_args(["--tls-cert", "cert.pem"])


def test_tls_key_without_cert():
    with pytest.raises(ValueError, match="No tls-cert set"):
        parse_args(["--tls-key", "key.pem"])


def test_tls_both_set():
    args = parse_args(["--tls-cert", "cert.pem", "--tls-key", "key.pem"])
    assert (args.tls_cert, args.tls_key) == (Path("cert.pem"), Path("key.pem"))


def test_serve_file_sets_path_is_file(serve_dir):
    target = serve_dir / "file.txt"
    target.write_text("content")
    args = parse_args([str(target)])
    assert args.path_is_file is True


def test_missing_serve_path(tmp_path):
    with pytest.raises(FileNotFoundError, match="doesn't exist"):
        parse_args([str(tmp_path / "nowhere")])


def test_sanitize_assets_path(tmp_path):
    assets = tmp_path / "assets"
    assets.mkdir()
    with pytest.raises(ValueError, match="index.html"):
        sanitize_assets_path(assets)
    (assets / "index.html").write_text("<html></html>")
    assert sanitize_assets_path(assets) == assets.resolve()
    assert parse_args(["--assets", str(assets)]).assets == assets.resolve()


def test_log_format_option():
    args = parse_args(["--log-format", "$remote_addr $status"])
    assert args.http_logger.render({"remote_addr": "1.2.3.4"}) == "1.2.3.4 -"


def test_env_fallback(monkeypatch):
    monkeypatch.setenv("DUFS_PORT", "3000")
    monkeypatch.setenv("DUFS_ALLOW_UPLOAD", "true")
    monkeypatch.setenv("DUFS_HIDDEN", "a,b")
    args = parse_args([])
    assert args.port == 3000
    assert args.allow_upload is True
    assert args.hidden == ["a", "b"]
    assert parse_args(["-p", "4000"]).port == 4000


def test_parse_addrs_ips():
    addrs = BindAddr.parse_addrs(["127.0.0.1", "::1"])
    assert [str(addr) for addr in addrs] == ["127.0.0.1", "::1"]
    assert default_addrs() == [ip("0.0.0.0"), ip("::")]


def test_bind_addr_ordering():
    socket = BindAddr(socket_path="/tmp/dufs.sock")
    addrs = [socket, ip("::1"), ip("192.168.0.1"), ip("10.0.0.1")]
    assert sorted(addrs) == [ip("10.0.0.1"), ip("192.168.0.1"), ip("::1"), socket]


def test_bind_addr_requires_one_kind():
    with pytest.raises(ValueError):
        BindAddr()


def test_encode_uri():
    assert encode_uri("a b/c?d") == "a%20b/c%3Fd"
    assert encode_uri("plain/path") == "plain/path"


def test_build_cli_help_mentions_options():
    text = build_cli().format_help()
    assert "--allow-upload" in text
    assert "--auth-method" not in text