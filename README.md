# dufs

Core pieces of a small file server: who may do what, how requests are
logged, how settings are read and where the server listens.

- `dufs.auth`: access rules such as `user:password@/dir1:rw,/dir2`, per-path
  permissions (`AccessPerm`, `AccessPaths`, `AccessControl`), Basic and Digest
  checks of an `Authorization` value (`check_auth`, `get_auth_user`), nonces
  (`create_nonce`, `validate_nonce`) and `WWW-Authenticate` challenge values
  (`www_authenticate`).
- `dufs.http_logger`: access log lines built from a format string such as
  `$remote_addr "$request" $status`, with `$http_<name>` for a request header
  (`HttpLogger`, `LogElement`, `ElementKind`).
- `dufs.logger`: `init(log_file)` sets up the `dufs` logger at INFO level,
  writing `<time> <LEVEL> - <message>` lines (`LineFormatter`) to a file, or
  to stdout (info) and stderr (warnings and errors).
- `dufs.streams`: chunked reading with a byte limit
  (`length_limited_chunks`) and filtering of data frames (`data_chunks`).
- `dufs.args`: the command-line parser (`build_cli`), YAML configuration
  (`Args.from_config`) and both merged into one `Args` value (`parse_args`).
- `dufs.listening`: local interface addresses (`interface_addrs`), choosing
  which addresses to bind and announce (`check_addrs`), listening TCP sockets
  (`create_listener`) and the "Listening on" message (`format_listening`).

## Access rules

A rule names an account and the paths it may reach. `:rw` grants read-write;
`:ro` or no suffix grants read-only. A rule with an empty account (`@/...`)
is for anonymous visitors and is also added to every named account. Several
rules may be joined with `|`. A malformed rule raises `ValueError`.

```python
from dufs.auth import AccessControl

control = AccessControl.from_rules(["user:password@/:rw", "@/public:ro"])
user, paths = control.guard("/public/readme.txt", "GET", None, False)
# user is None, paths.perm is AccessPerm.READ_ONLY
```

`guard` returns the authenticated user (or `None`) and the `AccessPaths`
granted, or `None` when access is refused. With no named accounts every
request gets read-write access. Once accounts exist, anonymous requests get
only what the `@/...` rule gives; paths outside it are refused, and parents of
covered paths are index-only. Methods other than `GET`, `HEAD`, `OPTIONS`,
`PROPFIND`, `CHECKAUTH` and `LOGOUT` need read-write access. Passwords
starting with `$6$` are checked as SHA-512 crypt hashes, and then only Basic
is offered in `www_authenticate`; otherwise Digest and Basic are both offered.

## Request logging

```python
from dufs.http_logger import HttpLogger

access_log = HttpLogger.parse('$remote_addr "$request" $status $http_user_agent')
line = access_log.render({"remote_addr": "127.0.0.1", "request": "GET /", "status": "200"})
# '127.0.0.1 "GET /" 200 -'
```

Values that are missing are written as `-`. `HttpLogger.data(request)`
collects `request`, `remote_user` and header values from an object with
`method`, `uri` and `headers`; `HttpLogger.log(data, err)` writes the line to
the `dufs` logger.

## Settings

`parse_args(argv)` parses the arguments, reads `DUFS_*` environment variables
for options not given (for example `DUFS_PORT`, `DUFS_HIDDEN`,
`DUFS_ALLOW_UPLOAD`), loads the YAML file named by `-c`/`--config` if any,
and returns an `Args` value. Command-line options and environment variables
win over the file.

```python
from dufs.args import parse_args

args = parse_args(["--hidden", "tmp,*.log,*.lock", "-p", "3000", "--allow-upload"])
```

A configuration file uses the long option names as keys:

```yaml
serve-path: /srv/files
bind:
  - 127.0.0.1
  - 192.168.8.10
port: 3000
allow-upload: true
hidden: tmp,*.log,*.lock
auth:
  - "@/public:ro"
log-format: '$remote_addr "$request" $status'
compress: low
```

Defaults: the current directory, addresses `0.0.0.0` and `::`, port 5000 and
`low` archive compression (`none`, `low`, `medium`, `high`, mapped to
`zipfile` methods by `Compress.to_compression`). The serve path must exist, an
`--assets` directory must hold `index.html`, and `--tls-cert` and `--tls-key`
must be given together.

## What this package does not do

It does not serve files or answer HTTP requests, and it installs no command.
`create_listener` returns a plain listening socket; no TLS is set up on it,
and the certificate and key paths in `Args` only change the announced URLs to
`https`. Archive building, directory listings, search, uploads and WebDAV
handling are not included.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.