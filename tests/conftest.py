# conftest.py
import pytest
import socket
import threading
import time
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from shadowx import ShadowXNode, TransferConfig, ensure_identity, build_client_context

TEST_HOST = '127.0.0.1'
TEST_SECRET = 'topsecret'


def wait_for(predicate, timeout: float = 10.0) -> bool:
    """Poll predicate until it is true or the timeout expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture(scope="session")
def identity(tmp_path_factory):
    """One TLS identity for the whole run (RSA key generation is slow)."""
    identity_dir = tmp_path_factory.mktemp("identity")
    return ensure_identity(identity_dir / "server.crt", identity_dir / "server.key")


@pytest.fixture(scope="function")
def server_output_dir(tmp_path):
    output_dir = tmp_path / "server_output"
    output_dir.mkdir()
    return output_dir


@pytest.fixture(scope="function")
def server_factory(identity, server_output_dir):
    """
    Starts servers in background threads on a free port (port=0).
    Every server started through the factory is shut down at teardown.
    """
    started = []

    def _start(**overrides) -> ShadowXNode:
        options = {
            'address': f"{TEST_HOST}:0",
            'psk': TEST_SECRET,
            'output_dir': server_output_dir,
            'log_file': None,
        }
        options.update(overrides)
        node = ShadowXNode('server', TransferConfig(**options), identity)

        thread = threading.Thread(target=node.start_server, daemon=True)
        thread.start()
        if not wait_for(lambda: node.running and node.port != 0):
            raise TimeoutError("Server did not start in time")

        started.append((node, thread))
        return node

    yield _start

    for node, thread in started:
        node.shutdown()
        thread.join(timeout=2)


@pytest.fixture(scope="function")
def server(server_factory) -> ShadowXNode:
    return server_factory()


@pytest.fixture(scope="function")
def client_factory(server):
    """Builds client nodes pointed at the running server."""

    def _create(psk: str = TEST_SECRET, **overrides) -> ShadowXNode:
        options = {
            'address': f"{TEST_HOST}:{server.port}",
            'psk': psk,
            'log_file': None,
        }
        options.update(overrides)
        return ShadowXNode('client', TransferConfig(**options))

    return _create


@pytest.fixture(scope="function")
def raw_tls_connect(server):
    """Opens bare TLS sockets to the server for hand-written protocol exchanges."""
    sockets = []
    context = build_client_context()

    def _connect():
        raw = socket.create_connection((TEST_HOST, server.port), timeout=10)
        tls = context.wrap_socket(raw, server_hostname=TEST_HOST)
        sockets.append(tls)
        return tls

    yield _connect

    for s in sockets:
        try:
            s.close()
        except OSError:
            pass
