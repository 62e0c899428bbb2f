#!/usr/bin/env python3
"""
ShadowX Secure File Transfer
TLS transport + pre-shared key authentication
One connection per file, concurrent receiver

Known limitations (kept for wire compatibility with existing peers):
- the sender accepts any server certificate unless verify_transport is set
- the negotiated target name is used verbatim as a path unless
  allow_path_escape is disabled
- there is no length framing: end of file is the peer closing the
  connection, so a premature close leaves a truncated file that looks
  complete
"""

import socket
import ssl
import os
import hmac
import json
import secrets
import threading
import argparse
import logging
from logging.handlers import RotatingFileHandler
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Optional, Dict, Any, Callable, List, BinaryIO
from datetime import datetime, timedelta, timezone
from cryptography import x509
from cryptography.x509.oid import NameOID, ExtendedKeyUsageOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jsonschema import validate, ValidationError

BUFFER_SIZE = 4096
MAX_CONTROL_SIZE = 4096
RSA_KEY_SIZE = 2048
CERT_VALIDITY_DAYS = 365
SERIAL_NUMBER_BITS = 128
CERT_ORGANIZATION = "ShadowX Secure File Transfer"
DEFAULT_ADDRESS = "127.0.0.1:8080"
DEFAULT_CERT_FILE = Path("server.crt")
DEFAULT_KEY_FILE = Path("server.key")
DEFAULT_LOG_FILE = "shadowx.log"
OUTPUT_DIR = Path(".")
PSK_ENV_VAR = "SHADOWX_PSK"

AUTH_SUCCESS = b"Authentication successful\n"
AUTH_FAILURE = b"Authentication failed\n"
AUTH_MARKER = b"Authentication successful"
OP_UPLOAD = "upload"

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "address": {"type": "string"},
        "psk": {"type": "string"},
        "path": {"type": ["string", "null"]},
        "output_dir": {"type": "string"},
        "cert_file": {"type": "string"},
        "key_file": {"type": "string"},
        "workers": {"type": "integer", "minimum": 1},
        "allow_path_escape": {"type": "boolean"},
        "verify_transport": {"type": "boolean"},
        "ca_file": {"type": ["string", "null"]},
        "connect_timeout": {"type": ["number", "null"], "exclusiveMinimum": 0},
        "log_file": {"type": ["string", "null"]},
        "log_level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR"]}
    },
    "additionalProperties": False
}

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(log_file: Optional[str] = DEFAULT_LOG_FILE, level: str = "INFO") -> None:
    """Attach console and rotating file handlers to the module logger (once)."""
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if logger.handlers:
        return
    formatter = logging.Formatter(LOG_FORMAT)
    if log_file:
        handler = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)


def parse_address(address: str) -> Tuple[str, int]:
    """Split 'host:port' (or '[v6]:port') into its parts."""
    if ':' not in address:
        raise ValueError(f"Invalid address (expected HOST:PORT): {address!r}")
    host, port_str = address.rsplit(':', 1)
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port number: {port_str!r}")
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return host, port


@dataclass
class TransferConfig:
    """Validated node configuration"""
    address: str = DEFAULT_ADDRESS
    psk: str = ""
    path: Optional[str] = None
    output_dir: Path = OUTPUT_DIR
    cert_file: Path = DEFAULT_CERT_FILE
    key_file: Path = DEFAULT_KEY_FILE
    workers: int = 1
    allow_path_escape: bool = True
    verify_transport: bool = False
    ca_file: Optional[Path] = None
    connect_timeout: Optional[float] = None
    log_file: Optional[str] = DEFAULT_LOG_FILE
    log_level: str = "INFO"

    def __post_init__(self):
        self.output_dir = Path(self.output_dir)
        self.cert_file = Path(self.cert_file)
        self.key_file = Path(self.key_file)
        if self.ca_file is not None:
            self.ca_file = Path(self.ca_file)
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.connect_timeout is not None and self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        self.host, self.port = parse_address(self.address)

    @property
    def role(self) -> str:
        return 'client' if self.path else 'server'

    @classmethod
    def from_file(cls, config_path: str, **overrides: Any) -> "TransferConfig":
        """Load a JSON config file; keyword overrides win over file values."""
        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid config file {config_path}: {e}")
        try:
            validate(instance=data, schema=CONFIG_SCHEMA)
        except ValidationError as e:
            raise ValueError(f"Invalid config file {config_path}: {e.message}")
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)


# --- Transport Bootstrap ---

@dataclass
class Identity:
    """Key pair and self-signed certificate used by the listening side."""
    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey
    cert_file: Path
    key_file: Path


def generate_identity(cert_file: Path, key_file: Path) -> Identity:
    """Create an RSA key and self-signed certificate and persist both as PEM."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)

    not_before = datetime.now(timezone.utc)
    not_after = not_before + timedelta(days=CERT_VALIDITY_DAYS)
    name = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, CERT_ORGANIZATION)])
    serial = secrets.randbelow((1 << SERIAL_NUMBER_BITS) - 1) + 1

    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=True,
                data_encipherment=False, key_agreement=False, key_cert_sign=False,
                crl_sign=False, encipher_only=False, decipher_only=False
            ),
            critical=True
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()), critical=False)
        .sign(private_key, hashes.SHA256())
    )

    cert_file = Path(cert_file)
    key_file = Path(key_file)
    cert_file.parent.mkdir(parents=True, exist_ok=True)
    key_file.parent.mkdir(parents=True, exist_ok=True)
    cert_file.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_file.write_bytes(private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption()
    ))
    try:
        os.chmod(key_file, 0o600)
    except OSError as e:
        logger.warning(f"Could not restrict permissions on {key_file}: {e}")

    logger.info(f"Generated new TLS identity (serial {serial:x}) -> {cert_file}, {key_file}")
    return Identity(certificate, private_key, cert_file, key_file)


def load_identity(cert_file: Path, key_file: Path) -> Identity:
    certificate = x509.load_pem_x509_certificate(Path(cert_file).read_bytes())
    private_key = serialization.load_pem_private_key(Path(key_file).read_bytes(), password=None)
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise ValueError(f"Unsupported private key type in {key_file}")
    return Identity(certificate, private_key, Path(cert_file), Path(key_file))


def ensure_identity(cert_file: Path = DEFAULT_CERT_FILE, key_file: Path = DEFAULT_KEY_FILE) -> Identity:
    """
    Load the persisted identity, or generate one if none exists.
    A lone certificate or lone key is treated as corrupt material.
    """
    cert_file = Path(cert_file)
    key_file = Path(key_file)
    cert_exists = cert_file.exists()
    key_exists = key_file.exists()

    if not cert_exists and not key_exists:
        return generate_identity(cert_file, key_file)
    if cert_exists != key_exists:
        missing = key_file if cert_exists else cert_file
        raise FileNotFoundError(f"Incomplete TLS identity: {missing} is missing")

    identity = load_identity(cert_file, key_file)
    logger.info(f"Loaded TLS identity from {cert_file}")
    return identity


def build_server_context(identity: Identity) -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.load_cert_chain(certfile=str(identity.cert_file), keyfile=str(identity.key_file))
    return ctx


def build_client_context(verify_transport: bool = False, ca_file: Optional[Path] = None) -> ssl.SSLContext:
    """
    Client TLS context. Without verify_transport any certificate is
    accepted, so the channel is confidential but not MITM-protected.
    """
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    # The generated certificate carries no host names.
    ctx.check_hostname = False
    if verify_transport:
        if ca_file is None:
            raise ValueError("verify_transport requires a ca_file")
        ctx.verify_mode = ssl.CERT_REQUIRED
        ctx.verify_flags |= ssl.VERIFY_X509_PARTIAL_CHAIN
        ctx.load_verify_locations(cafile=str(ca_file))
    else:
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


# --- Session ---

class Session:
    """One TLS stream carrying at most one file transfer."""

    def __init__(self, sock: socket.socket, peer: str):
        self.sock = sock
        self.peer = peer
        self.authenticated = False
        self.target_name: Optional[str] = None
        # bytes read past the end of the last control line
        self.pending = b''

    def read_message(self) -> bytes:
        """
        Read one control message: a single read of at most
        MAX_CONTROL_SIZE bytes, cut at the first newline.
        """
        if b'\n' not in self.pending:
            chunk = self.sock.recv(MAX_CONTROL_SIZE)
            if not chunk:
                raise ConnectionAbortedError("Connection closed while reading control message")
            self.pending += chunk
        line, _, rest = self.pending.partition(b'\n')
        self.pending = rest
        return line.strip()

    def take_pending(self) -> bytes:
        data, self.pending = self.pending, b''
        return data

    def close(self):
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Error closing session with {self.peer}: {e}")


# --- Session Authenticator / Metadata Negotiator ---

def parse_request(message: str) -> Tuple[str, str]:
    """Split '<operation> <target-name>' and check the operation."""
    parts = message.strip().split(' ', 1)
    if len(parts) != 2 or parts[0] != OP_UPLOAD:
        raise ValueError(f"Invalid transfer request: {message[:64]!r}")
    return parts[0], parts[1]


def resolve_target(name: str, output_dir: Path, allow_path_escape: bool = True) -> Path:
    """
    Map a negotiated target name to a local path. Relative names land
    under output_dir; absolute names and '..' are honored unless
    allow_path_escape is False.
    """
    target = Path(output_dir) / name
    if allow_path_escape:
        return target
    base = Path(output_dir).resolve()
    resolved = target.resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(f"Target path escapes output directory: {name!r}")
    return resolved


class SessionProtocol:
    """Control exchange: secret round trip, then the transfer request."""

    def __init__(self, secret: str):
        self.secret = secret.encode('utf-8')

    def authenticate(self, session: Session) -> bool:
        """Responder side. One attempt per connection."""
        presented = session.read_message()
        if not hmac.compare_digest(presented, self.secret):
            session.sock.sendall(AUTH_FAILURE)
            return False
        session.sock.sendall(AUTH_SUCCESS)
        session.authenticated = True
        return True

    def present(self, session: Session) -> bool:
        """Initiator side. Any response without the success marker is a failure."""
        session.sock.sendall(self.secret + b'\n')
        try:
            response = session.sock.recv(MAX_CONTROL_SIZE)
        except OSError as e:
            logger.error(f"Error reading authentication response from {session.peer}: {e}")
            return False
        if AUTH_MARKER not in response:
            logger.error(f"Authentication failed. Server response: {response.decode('utf-8', 'replace').strip()!r}")
            return False
        session.authenticated = True
        return True

    def request(self, session: Session, name: str):
        if '\n' in name or '\r' in name:
            raise ValueError(f"Target name cannot contain line terminators: {name!r}")
        session.sock.sendall(f"{OP_UPLOAD} {name}\n".encode('utf-8'))
        session.target_name = name

    def negotiate(self, session: Session) -> str:
        raw = session.read_message()
        try:
            message = raw.decode('utf-8')
        except UnicodeDecodeError:
            raise ValueError("Invalid transfer request: not UTF-8")
        _, name = parse_request(message)
        session.target_name = name
        return name


# --- Streaming Transfer Engine ---

@dataclass
class TransferRecord:
    """Progress of one file on one side of a session."""
    name: str
    transferred: int = 0
    total: Optional[int] = None

    @property
    def percent(self) -> Optional[float]:
        if self.total is None:
            return None
        if self.total == 0:
            return 100.0
        return (self.transferred / self.total) * 100


ProgressCallback = Callable[[TransferRecord], None]


def _notify(progress: Optional[ProgressCallback], record: TransferRecord):
    if progress:
        try:
            progress(record)
        except Exception as cb_e:
            logger.warning(f"Progress callback failed: {cb_e}")


def send_stream(source: BinaryIO, sock: socket.socket, record: TransferRecord,
                progress: Optional[ProgressCallback] = None) -> int:
    """Copy source to sock in BUFFER_SIZE chunks until source EOF."""
    chunk_ba = bytearray(BUFFER_SIZE)
    chunk_view = memoryview(chunk_ba)
    sent = 0
    while True:
        read_len = source.readinto(chunk_ba)
        if not read_len:
            break
        sock.sendall(chunk_view[:read_len])
        sent += read_len
        record.transferred += read_len
        _notify(progress, record)
    return sent


def receive_stream(sock: socket.socket, sink: BinaryIO, record: TransferRecord,
                   initial: bytes = b'', progress: Optional[ProgressCallback] = None) -> int:
    """
    Append everything read from sock to sink until the peer closes.
    A close in the middle of a file is not detectable here.
    """
    received = 0
    if initial:
        sink.write(initial)
        received += len(initial)
        record.transferred += len(initial)
        _notify(progress, record)

    chunk_ba = bytearray(BUFFER_SIZE)
    chunk_view = memoryview(chunk_ba)
    while True:
        read_len = sock.recv_into(chunk_ba)
        if not read_len:
            break
        sink.write(chunk_view[:read_len])
        received += read_len
        record.transferred += read_len
        _notify(progress, record)
    return received


# --- Session / Dispatch Drivers ---

class ShadowXNode:
    """Responder (server) or initiator (client) node"""

    def __init__(self, mode: str, config: TransferConfig, identity: Optional[Identity] = None):
        if mode not in ('server', 'client'):
            raise ValueError(f"Unknown mode: {mode}")
        self.config = config
        self.mode = mode
        self.host = config.host
        self.port = config.port
        self.identity = identity
        self.protocol = SessionProtocol(config.psk)

        if self.mode == 'server':
            if identity is None:
                raise ValueError("Server mode requires a TLS identity")
            self.tls_context = build_server_context(identity)
        else:
            self.tls_context = build_client_context(
                config.verify_transport, config.ca_file or config.cert_file
            )

        self.socket: Optional[socket.socket] = None
        self.running = False
        self.transfer_stats = {
            'sessions': 0, 'auth_failures': 0, 'errors': 0,
            'files_received': 0, 'files_sent': 0,
            'bytes_received': 0, 'bytes_sent': 0
        }
        self._stats_lock = threading.Lock()
        self.active_threads: List[threading.Thread] = []

    def _count(self, key: str, amount: int = 1):
        with self._stats_lock:
            self.transfer_stats[key] += amount

    # Responder

    def start_server(self):
        """Accept connections until shutdown(); one thread per connection."""
        self.socket = socket.socket(socket.AF_INET6 if ':' in self.host else socket.AF_INET, socket.SOCK_STREAM)
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.socket.bind((self.host, self.port))
            self.socket.listen(socket.SOMAXCONN)
        except OSError as e:
            logger.error(f"Error starting server on {self.host}:{self.port}: {e}")
            self.socket.close()
            raise

        self.port = self.socket.getsockname()[1]
        self.running = True
        logger.info(f"ShadowX server listening on {self.host}:{self.port}")
        logger.info(f"Files output: {self.config.output_dir.resolve()}")

        try:
            while self.running:
                try:
                    conn, addr = self.socket.accept()
                except OSError as e:
                    if self.running:
                        logger.error(f"Error accepting connection: {e}")
                        continue
                    break
                self.active_threads = [t for t in self.active_threads if t.is_alive()]
                client_thread = threading.Thread(
                    target=self._handle_connection,
                    args=(conn, addr),
                    name=f"ClientThread-{addr[0]}:{addr[1]}",
                    daemon=True
                )
                client_thread.start()
                self.active_threads.append(client_thread)
        finally:
            self.shutdown()

    def _handle_connection(self, conn: socket.socket, addr: Tuple):
        """Authenticate, negotiate and receive one file (SERVER LOGIC)"""
        thread_name = threading.current_thread().name
        peer = f"{addr[0]}:{addr[1]}"
        self._count('sessions')
        logger.info(f"[{thread_name}] Client connected: {peer}")

        try:
            tls_conn = self.tls_context.wrap_socket(conn, server_side=True)
        except (ssl.SSLError, OSError) as e:
            logger.error(f"[{thread_name}] TLS handshake with {peer} failed: {e}")
            self._count('errors')
            conn.close()
            return

        session = Session(tls_conn, peer)
        try:
            if not self.protocol.authenticate(session):
                logger.warning(f"[{thread_name}] Authentication failed! Disconnecting client: {peer}")
                self._count('auth_failures')
                return
            logger.info(f"[{thread_name}] Client {peer} authenticated successfully")

            name = self.protocol.negotiate(session)
            target = resolve_target(name, self.config.output_dir, self.config.allow_path_escape)
            logger.info(f"[{thread_name}] Receiving: {name} -> {target}")
            self._receive_file(session, target)

        except ConnectionAbortedError as e:
            logger.info(f"[{thread_name}] Client {peer} closed the connection: {e}")
            if not session.authenticated:
                self._count('auth_failures')
        except ValueError as e:
            logger.error(f"[{thread_name}] Protocol error from {peer}: {e}")
            self._count('errors')
        except OSError as e:
            logger.error(f"[{thread_name}] I/O error with {peer}: {e}")
            self._count('errors')
        finally:
            session.close()

    def _receive_file(self, session: Session, target: Path):
        thread_name = threading.current_thread().name
        record = TransferRecord(str(target))

        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open('wb') as f:
            try:
                receive_stream(session.sock, f, record, initial=session.take_pending())
            finally:
                self._count('bytes_received', record.transferred)

        self._count('files_received')
        logger.info(f"[{thread_name}] File received: {target} ({record.transferred} bytes)")

    # Initiator

    def connect(self) -> Session:
        """Open a TLS connection to the configured server."""
        logger.debug(f"Connecting to {self.host}:{self.port}...")
        raw_sock = socket.create_connection((self.host, self.port), timeout=self.config.connect_timeout)
        raw_sock.settimeout(None)
        try:
            tls_sock = self.tls_context.wrap_socket(raw_sock, server_hostname=self.host)
        except (ssl.SSLError, OSError):
            raw_sock.close()
            raise
        return Session(tls_sock, f"{self.host}:{self.port}")

    def send_file(self, local_path: str, remote_name: Optional[str] = None,
                  progress_callback: Optional[ProgressCallback] = None) -> bool:
        """
        Send one file over its own connection (CLIENT LOGIC).
        The remote name defaults to local_path exactly as given.
        Returns True on success; errors are logged, not raised.
        """
        path = Path(local_path)
        name = remote_name if remote_name is not None else str(local_path)

        if not path.is_file():
            logger.error(f"File does not exist: {local_path}")
            self._count('errors')
            return False

        session: Optional[Session] = None
        record = TransferRecord(name)
        try:
            record.total = path.stat().st_size
            session = self.connect()
            if not self.protocol.present(session):
                logger.error(f"Authentication rejected by {session.peer}, skipping {local_path}")
                self._count('auth_failures')
                return False
            self.protocol.request(session, name)
            with path.open('rb') as f:
                send_stream(f, session.sock, record, progress_callback)
        except (ValueError, OSError) as e:
            logger.error(f"Error sending {local_path}: {e}")
            self._count('errors')
            return False
        finally:
            self._count('bytes_sent', record.transferred)
            if session:
                session.close()

        self._count('files_sent')
        logger.info(f"File sent successfully: {local_path} ({record.transferred} bytes)")
        return True

    def send_path(self, path: str, progress_callback: Optional[ProgressCallback] = None) -> Dict[str, bool]:
        """
        Send a file, or every regular file under a directory, one
        connection per file. Sequential unless config.workers > 1.
        """
        root = Path(path)
        if not root.exists():
            logger.error(f"Error accessing file or directory: {path}")
            self._count('errors')
            return {path: False}

        if root.is_dir():
            files = list_files(path)
        else:
            files = [path]

        results: Dict[str, bool] = {}
        if self.config.workers == 1 or len(files) <= 1:
            for file_path in files:
                logger.info(f"Sending: {file_path}")
                results[file_path] = self.send_file(file_path, progress_callback=progress_callback)
            return results

        with ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="SendWorker") as pool:
            futures = {file_path: pool.submit(self.send_file, file_path) for file_path in files}
            for file_path, future in futures.items():
                results[file_path] = future.result()
        return results

    def shutdown(self):
        """Stop accepting connections."""
        was_running = self.running
        self.running = False
        if self.socket:
            # shutdown() wakes a thread blocked in accept(); close() alone does not
            try:
                self.socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                self.socket.close()
            except OSError:
                pass
        if was_running:
            logger.info("Node shut down.")


def list_files(directory: str) -> List[str]:
    """Regular files under directory, recursively, in a stable order."""
    files = []
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames.sort()
        for filename in sorted(filenames):
            file_path = os.path.join(dirpath, filename)
            if os.path.isfile(file_path):
                files.append(file_path)
            else:
                logger.warning(f"Skipping non-regular file: {file_path}")
    return files


def simple_progress_callback(record: TransferRecord):
    """Console progress for send_file"""
    print(f"\rSent: {record.transferred}/{record.total} bytes ({record.percent:.2f}%)", end="")
    if record.transferred == record.total:
        print()


USAGE_EXAMPLES = """\
Server Mode (default):
  shadowx -i 0.0.0.0:8080 -p mysecretkey

Client Mode (send file or directory):
  shadowx -i 192.168.1.100:8080 -p mysecretkey -f myfile.txt
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shadowx",
        description="ShadowX - Secure File Transfer",
        epilog=USAGE_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('-i', '--address', type=str, help=f'IP and port to bind/connect (default {DEFAULT_ADDRESS})')
    parser.add_argument('-p', '--psk', type=str, help=f'Pre-Shared Key for authentication (or ${PSK_ENV_VAR})')
    parser.add_argument('-f', '--file', dest='path', type=str, help='File or directory to send (client mode)')
    parser.add_argument('-c', '--config', type=str, help='JSON configuration file')
    parser.add_argument('-o', '--output-dir', type=str, help='Directory for received files (server mode)')
    parser.add_argument('--cert', dest='cert_file', type=str, help='TLS certificate path')
    parser.add_argument('--key', dest='key_file', type=str, help='TLS private key path')
    parser.add_argument('-w', '--workers', type=int, help='Parallel connections for directory sends (default 1)')
    parser.add_argument('--confine-paths', dest='allow_path_escape', action='store_false', default=None,
                        help='Reject target names that resolve outside the output directory')
    parser.add_argument('--verify-transport', action='store_true', default=None,
                        help='Verify the server certificate against --ca-file (client mode)')
    parser.add_argument('--ca-file', type=str, help='Trusted certificate for --verify-transport')
    parser.add_argument('--log-file', type=str, help=f'Log file (default {DEFAULT_LOG_FILE})')
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides = {
        'address': args.address,
        'psk': args.psk or os.environ.get(PSK_ENV_VAR),
        'path': args.path,
        'output_dir': args.output_dir,
        'cert_file': args.cert_file,
        'key_file': args.key_file,
        'workers': args.workers,
        'allow_path_escape': args.allow_path_escape,
        'verify_transport': args.verify_transport,
        'ca_file': args.ca_file,
        'log_file': args.log_file,
        'log_level': args.log_level,
    }
    try:
        if args.config:
            config = TransferConfig.from_file(args.config, **overrides)
        else:
            config = TransferConfig(**{k: v for k, v in overrides.items() if v is not None})
    except (ValueError, TypeError, OSError) as e:
        print(f"[ERROR] {e}")
        return 2

    if not config.psk:
        parser.print_help()
        return 0

    configure_logging(config.log_file, config.log_level)

    if config.role == 'client':
        try:
            node = ShadowXNode('client', config)
        except (ValueError, OSError) as e:
            logger.error(f"Error preparing TLS client context: {e}")
            return 1
        progress = simple_progress_callback if config.workers == 1 else None
        results = node.send_path(config.path, progress_callback=progress)
        failed = [p for p, ok in results.items() if not ok]
        if failed:
            logger.error(f"{len(failed)} of {len(results)} file(s) failed")
            return 1
        return 0

    try:
        identity = ensure_identity(config.cert_file, config.key_file)
        node = ShadowXNode('server', config, identity)
    except (ValueError, OSError) as e:
        logger.error(f"Error preparing TLS identity: {e}")
        return 1

    try:
        node.start_server()
    except KeyboardInterrupt:
        logger.info("User interrupt, shutting down.")
    except OSError:
        return 1
    finally:
        node.shutdown()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
