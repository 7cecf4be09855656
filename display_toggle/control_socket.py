"""
Control Socket - Commands for the running agent
===============================================

The daemon listens on a Unix socket so one-shot commands (``--apply``,
``--reset``, ``--manual``, ...) act on the live agent instead of on a
second engine that knows nothing of the daemon's state. Each connection
carries one request and one reply, both a JSON object on a single line::

    -> {"command": "apply_profile", "name": "Game"}
    <- {"ok": true, "message": "Active: Profile 'Game'", "errors": [], "pending": "1920x1080@144 Hz, 32 bpp"}
"""

import json
import logging
import os
import socket
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .errors import DisplayToggleError
from .models import ColorSettings, ResolutionSpec

logger = logging.getLogger(__name__)

MAX_REQUEST_BYTES = 64 * 1024
DEFAULT_REQUEST_TIMEOUT = 90.0

Handler = Callable[[Dict[str, Any]], Dict[str, Any]]


def default_socket_path() -> Path:
    """Socket in ``$XDG_RUNTIME_DIR``, or in the user's cache directory."""
    runtime_dir = os.environ.get('XDG_RUNTIME_DIR')
    base = Path(runtime_dir) if runtime_dir else Path.home() / ".cache" / "display-toggle"
    return base / "display-toggle.sock"


def send_request(request: Dict[str, Any], path: Optional[Path] = None,
                 timeout: float = DEFAULT_REQUEST_TIMEOUT) -> Optional[Dict[str, Any]]:
    """
    Send one request to the running agent.

    Returns:
        The agent's reply, or None if no agent is listening

    Raises:
        OSError: If the connection breaks after it was established
        ValueError: If the reply is not valid JSON
    """
    path = Path(path) if path else default_socket_path()
    if not path.exists():
        return None

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        try:
            sock.connect(str(path))
        except (FileNotFoundError, ConnectionRefusedError):
            return None
        sock.sendall((json.dumps(request) + "\n").encode())
        sock.shutdown(socket.SHUT_WR)
        chunks = []
        while True:
            chunk = sock.recv(8192)
            if not chunk:
                break
            chunks.append(chunk)
    finally:
        sock.close()

    return json.loads(b"".join(chunks).decode(errors="replace"))


class ControlServer:
    """
    Accepts requests on the control socket and answers them with *handler*.

    Only one server can own the socket; ``start`` fails while another agent
    answers on it and removes a stale socket file left by a crashed one.
    """

    def __init__(self, handler: Handler, path: Optional[Path] = None):
        self.handler = handler
        self.path = Path(path) if path else default_socket_path()
        self.running = False
        self._server_socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        """
        Bind the socket and start accepting requests.

        Returns:
            True if the server started, False if another agent is running or binding failed
        """
        if self.path.exists():
            try:
                reply = send_request({'command': 'ping'}, self.path, timeout=2.0)
            except (OSError, ValueError):
                reply = None
            if reply is not None:
                logger.error(f"Another display-toggle agent is already listening on {self.path}")
                return False
            logger.debug(f"Removing stale control socket {self.path}")
            self.path.unlink()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._server_socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            self._server_socket.bind(str(self.path))
            os.chmod(self.path, 0o600)
            self._server_socket.listen(5)
        except OSError as e:
            logger.error(f"Failed to open control socket {self.path}: {e}")
            self._close_socket()
            return False

        self.running = True
        self._thread = threading.Thread(target=self._server_loop, name="control-socket", daemon=True)
        self._thread.start()
        logger.info(f"Listening for commands on {self.path}")
        return True

    def stop(self):
        """Stop accepting requests and remove the socket file."""
        if not self.running:
            return
        self.running = False
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None
        self._close_socket()
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        logger.info("Control socket closed")

    def _close_socket(self):
        if self._server_socket is not None:
            self._server_socket.close()
            self._server_socket = None

    def _server_loop(self):
        """Background thread accepting connections."""
        # Periodic timeout lets the loop notice stop()
        self._server_socket.settimeout(0.5)
        while self.running:
            try:
                client, _ = self._server_socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    logger.error(f"Control socket error: {e}")
                break
            threading.Thread(target=self._handle_client, args=(client,), daemon=True).start()

    def _read_request(self, client: socket.socket) -> Dict[str, Any]:
        buffer = b""
        while b"\n" not in buffer:
            chunk = client.recv(4096)
            if not chunk:
                break
            buffer += chunk
            if len(buffer) > MAX_REQUEST_BYTES:
                raise ValueError("request too large")
        request = json.loads(buffer.split(b"\n", 1)[0].decode(errors="replace"))
        if not isinstance(request, dict) or 'command' not in request:
            raise ValueError("request must be an object with a 'command'")
        return request

    def _handle_client(self, client: socket.socket):
        """Answer one request."""
        try:
            client.settimeout(DEFAULT_REQUEST_TIMEOUT)
            try:
                request = self._read_request(client)
                logger.debug(f"Control request: {request}")
                reply = self.handler(request)
            except (ValueError, KeyError, TypeError, DisplayToggleError) as e:
                reply = {'ok': False, 'message': f"Error: {e}", 'errors': []}
            except Exception as e:
                logger.error(f"Control request failed: {e}")
                reply = {'ok': False, 'message': f"Error: {e}", 'errors': []}
            client.sendall((json.dumps(reply) + "\n").encode())
        except OSError as e:
            logger.warning(f"Control client error: {e}")
        finally:
            client.close()


def outcome_reply(outcome) -> Dict[str, Any]:
    """Reply describing an engine ``Outcome``."""
    pending = outcome.session.target if outcome.session and outcome.session.is_pending else None
    return {
        'ok': outcome.ok,
        'message': f"Active: {outcome.state.describe()}",
        'errors': [str(e) for e in outcome.errors],
        'pending': str(pending) if pending else None,
    }


class AgentCommandHandler:
    """
    Runs control requests on the agent.

    Settings that outlive the daemon (auto-switch, last manual settings) are
    saved to the configuration as the live agent changes them.
    """

    def __init__(self, agent, config, store):
        """
        Args:
            agent: Running ``ControlAgent``
            config: Loaded ``Config``
            store: Loaded ``ProfileStore``
        """
        self.agent = agent
        self.config = config
        self.store = store
        self._commands: Dict[str, Handler] = {
            'ping': lambda request: {'ok': True, 'message': "pong", 'errors': []},
            'status': self._status,
            'apply_profile': self._apply_profile,
            'apply_manual': self._apply_manual,
            'reset': lambda request: outcome_reply(self.agent.reset()),
            'apply_resolution': self._apply_resolution,
            'set_auto_switch': self._set_auto_switch,
            'reload_profiles': self._reload_profiles,
        }

    def __call__(self, request: Dict[str, Any]) -> Dict[str, Any]:
        command = self._commands.get(request.get('command'))
        if command is None:
            return {'ok': False, 'message': f"Error: unknown command '{request.get('command')}'", 'errors': []}
        return command(request)

    def _status(self, request):
        return {'ok': True, 'message': self.agent.status().format(self.config.defaults), 'errors': []}

    def _apply_profile(self, request):
        profile = self.store.get(request['name'])
        if profile is None:
            return {'ok': False, 'message': f"Error: no profile named '{request['name']}'", 'errors': []}
        return outcome_reply(self.agent.apply_profile(profile))

    def _apply_manual(self, request):
        settings = ColorSettings.from_dict(request['settings'], self.config.manual)
        outcome = self.agent.apply_manual(settings)
        self.config.save_manual_settings(settings)
        return outcome_reply(outcome)

    def _apply_resolution(self, request):
        return outcome_reply(self.agent.apply_resolution(ResolutionSpec.parse(request['mode'])))

    def _set_auto_switch(self, request):
        enabled = bool(request['enabled'])
        outcome = self.agent.set_auto_switch(enabled)
        self.config.set_auto_switch_enabled(enabled)
        reply = outcome_reply(outcome)
        reply['message'] = f"Auto profile switching {'enabled' if enabled else 'disabled'}"
        return reply

    def _reload_profiles(self, request):
        profiles = self.store.load()
        self.agent.submit_profiles(profiles).result()
        return {'ok': True, 'message': f"Reloaded {len(profiles)} profiles", 'errors': []}
