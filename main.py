#!/usr/bin/env python3
"""
Display Toggle - Per-application display profiles for Linux
============================================================

Switch color settings (digital vibrance, hue, brightness/contrast/gamma)
and screen resolution when a configured application is running. Resolution
changes must be confirmed within a short window or they are reverted.

Usage:
    python main.py [--config PATH] [--no-gui] [--debug]

    Quick commands:
        --status                Show the current display state and exit
        --list-modes            List supported resolutions and exit
        --list-profiles         List profiles and exit
        --apply NAME            Apply (or toggle off) a profile
        --manual [V,H,B,C,G]    Apply manual color settings
        --reset                 Restore default color settings
        --set-resolution MODE   Change resolution (WxH@R[:D]) with confirmation
        --add-profile NAME      Add a profile (with --process and value options)
        --edit-profile NAME     Change values of a profile
        --remove-profile NAME   Remove a profile
        --auto-switch on|off    Enable or disable automatic profile switching

    While the agent runs, --status, --apply, --manual, --reset,
    --set-resolution and --auto-switch act on it through its control socket,
    and profile edits are reloaded by it. Without a running agent they run
    once against the display; --apply then always activates.
"""

# Disable IBus integration to prevent high CPU usage
# Must be set before any tkinter imports
import os
os.environ['GTK_IM_MODULE'] = ''
os.environ['QT_IM_MODULE'] = ''
os.environ['XMODIFIERS'] = ''

import argparse
import logging
import queue
import signal
import sys
from pathlib import Path
from typing import Optional

# Set up logging first
def setup_logging(debug: bool = False, log_file: Optional[Path] = None):
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
    )

logger = logging.getLogger(__name__)

LOG_FILE = Path.home() / ".local" / "share" / "display-toggle" / "display-toggle.log"


def parse_manual_settings(text: str, base):
    """
    Parse "V,H,B,C,G" into ColorSettings; empty fields keep *base* values.

    Raises:
        ValueError: If a field is not a number or out of range
    """
    from display_toggle.models import ColorSettings

    names = ('vibrance', 'hue', 'brightness', 'contrast', 'gamma')
    parts = [p.strip() for p in text.split(',')]
    if len(parts) > len(names):
        raise ValueError(f"Expected at most {len(names)} values (vibrance,hue,brightness,contrast,gamma)")
    values = base.to_dict()
    for name, part in zip(names, parts):
        if part:
            values[name] = int(part) if name in ('vibrance', 'hue') else float(part)
    return ColorSettings.from_dict(values)


class DisplayToggleApp:
    """
    Main application controller.

    Wires configuration, display backends, the activation engine and the
    control agent, and presents resolution confirmations.
    """

    def __init__(self, config_path: Optional[Path] = None, gui_enabled: bool = True,
                 socket_path: Optional[Path] = None):
        """
        Initialize the application.

        Args:
            config_path: Path to configuration file
            gui_enabled: Show the confirm dialog (False: prompt on stdin)
            socket_path: Control socket of the daemon, or None for the default
        """
        self.config_path = config_path
        self.gui_enabled = gui_enabled
        self.socket_path = socket_path
        self._running = False
        self._stopped = False

        # Components (initialized in setup())
        self.config = None
        self.store = None
        self.engine = None
        self.agent = None
        self.server = None
        self._confirm_requests: "queue.Queue" = queue.Queue()

    def load_settings(self):
        """Load configuration and profiles."""
        from display_toggle.config import Config
        from display_toggle.profile_store import ProfileStore

        self.config = Config(self.config_path)
        if not self.config.config_path.exists():
            Config.create_default_config(self.config.config_path)
        self.config.load()

        self.store = ProfileStore(self.config.profiles_path)
        self.store.load()

    def setup(self, with_monitor: bool = True):
        """Load configuration and profiles and build the engine and agent."""
        from display_toggle.agent import ControlAgent
        from display_toggle.color_control import DisplayColorControl
        from display_toggle.engine import ActivationEngine
        from display_toggle.process_monitor import ProcessMonitor
        from display_toggle.resolution_control import XrandrResolutionControl
        from display_toggle.resolution_session import ResolutionGuard

        if self.config is None:
            self.load_settings()

        resolution = XrandrResolutionControl(output=self.config.backend.output)
        guard = ResolutionGuard(
            resolution,
            auto_confirm=self.config.agent.auto_confirm_resolution,
        )
        self.engine = ActivationEngine(
            color=DisplayColorControl.from_settings(self.config.backend),
            guard=guard,
            profiles=self.store.profiles,
            defaults=self.config.defaults,
            auto_switch_enabled=self.config.agent.auto_switch_enabled,
            confirm_timeout=self.config.agent.confirm_timeout_seconds,
        )

        monitor = ProcessMonitor(self.config.agent.poll_interval_seconds) if with_monitor else None
        self.agent = ControlAgent(self.engine, monitor)
        self.agent.add_outcome_callback(self._on_outcome)

    def _on_outcome(self, command: str, outcome):
        """Runs on the agent thread; hands pending sessions to the main thread."""
        if outcome.session is not None and outcome.session.is_pending:
            self._confirm_requests.put(outcome.session)

    def _submit(self, submit_func):
        def on_done(future):
            error = future.exception()
            if error is not None:
                logger.warning(f"{error}")
        submit_func().add_done_callback(on_done)

    def present_confirmation(self, session) -> Optional[str]:
        """Ask the user to keep or revert *session* (blocks until answered)."""
        if self.gui_enabled:
            from display_toggle.gui.confirm_dialog import ResolutionConfirmDialog
            presenter_class = ResolutionConfirmDialog
        else:
            from display_toggle.gui.console_prompt import ConsoleConfirmPrompt
            presenter_class = ConsoleConfirmPrompt

        presenter = presenter_class(
            session,
            on_keep=lambda: self._submit(lambda: self.agent.submit_confirm(session.session_id)),
            on_revert=lambda: self._submit(lambda: self.agent.submit_revert(session.session_id)),
        )
        try:
            return presenter.show()
        except Exception as e:
            # No display for the dialog: the deadline still reverts the change
            logger.error(f"Cannot show resolution confirmation: {e}")
            return None

    def present_pending(self, timeout: float = 0.1):
        """Present every queued confirmation request."""
        while True:
            try:
                session = self._confirm_requests.get(timeout=timeout)
            except queue.Empty:
                return
            self.present_confirmation(session)
            timeout = 0

    def start(self) -> bool:
        """Start the application."""
        from display_toggle.control_socket import AgentCommandHandler, ControlServer

        logger.info("Starting Display Toggle...")
        try:
            self.setup()
        except Exception as e:
            logger.error(f"Failed to start: {e}")
            return False

        # Claim the control socket first; a second daemon must not touch the display
        self.server = ControlServer(AgentCommandHandler(self.agent, self.config, self.store), self.socket_path)
        if not self.server.start():
            self.server = None
            return False

        self.agent.start()
        self._running = True
        logger.info(f"Loaded {len(self.store.profiles)} profiles, auto-switch "
                    f"{'on' if self.engine.auto_switch_enabled else 'off'}")
        return True

    def stop(self):
        """Stop the application, restoring the display."""
        # Guard against double-stop
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping Display Toggle...")
        self._running = False
        if self.server is not None:
            self.server.stop()
        if self.agent is not None:
            self.agent.stop()
        logger.info("Display Toggle stopped")

    def run(self):
        """Run the application (blocking)."""
        if not self.start():
            return 1

        # Set up signal handlers
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}")
            self._running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        try:
            while self._running:
                self.present_pending()
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()
        return 0


# ── Quick commands ───────────────────────────────────────────────────────

def _print_outcome(outcome):
    print(f"Active: {outcome.state.describe()}")
    for error in outcome.errors:
        print(f"Warning: {error}")


def _print_reply(reply) -> int:
    """Print a reply of the running agent and return the exit code."""
    print(reply.get('message', ''))
    for error in reply.get('errors') or []:
        print(f"Warning: {error}")
    if reply.get('pending'):
        print(f"Resolution change to {reply['pending']} awaits confirmation on the running agent")
    return 0 if reply.get('ok') else 1


def _run_guarded(app: DisplayToggleApp, submit) -> int:
    """Run one agent command that may open a resolution session, then exit."""
    app.agent.start()
    try:
        outcome = submit().result()
        _print_outcome(outcome)
        app.present_pending(timeout=0.5)
        return 0 if outcome.ok else 1
    finally:
        # Pending changes never outlive the process
        app.agent.stop(restore=False)


def profile_from_args(args, base=None):
    """Build a profile from the value options, starting from *base*."""
    from display_toggle.models import Profile, ResolutionSpec

    changes = {}
    for name in ('vibrance', 'hue', 'brightness', 'contrast', 'gamma'):
        value = getattr(args, name)
        if value is not None:
            changes[name] = value
    if args.process:
        changes['process_match'] = args.process
    if args.resolution:
        changes['resolution'] = (None if args.resolution.lower() == 'none'
                                 else ResolutionSpec.parse(args.resolution))
    if base is None:
        return Profile(name=args.add_profile, **changes)
    return base.with_changes(**changes)


def agent_request(args, config) -> Optional[dict]:
    """
    Request for the running agent that carries out *args*, if it is a live command.

    Raises:
        ValueError: If a value does not parse
    """
    from display_toggle.models import ResolutionSpec

    if args.status:
        return {'command': 'status'}
    if args.auto_switch:
        return {'command': 'set_auto_switch', 'enabled': args.auto_switch == 'on'}
    if args.manual is not None:
        settings = parse_manual_settings(args.manual, config.manual)
        return {'command': 'apply_manual', 'settings': settings.to_dict()}
    if args.reset:
        return {'command': 'reset'}
    if args.apply:
        return {'command': 'apply_profile', 'name': args.apply}
    if args.set_resolution:
        ResolutionSpec.parse(args.set_resolution)
        return {'command': 'apply_resolution', 'mode': args.set_resolution}
    return None


def _notify_profiles_changed(app: DisplayToggleApp):
    """Let a running agent pick up the edited profile file."""
    from display_toggle.control_socket import send_request

    try:
        reply = send_request({'command': 'reload_profiles'}, app.socket_path)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not notify the running agent: {e}")
        return
    if reply is not None:
        print(reply.get('message', ''))


def run_quick_command(args, socket_path: Optional[Path] = None) -> Optional[int]:
    """
    Handle a one-shot command.

    Live commands go to the running agent over its control socket; only when
    no agent is running are they carried out by a short-lived local agent.

    Returns:
        Exit code, or None if no quick command was given
    """
    from display_toggle.control_socket import send_request
    from display_toggle.errors import DisplayToggleError

    quick = (args.status or args.list_modes or args.list_profiles or args.apply or
             args.manual is not None or args.reset or args.set_resolution or
             args.add_profile or args.edit_profile or args.remove_profile or args.auto_switch)
    if not quick:
        return None

    app = DisplayToggleApp(config_path=args.config, gui_enabled=not args.no_gui, socket_path=socket_path)
    try:
        app.load_settings()

        if args.list_profiles:
            if not app.store.profiles:
                print("No profiles.")
            for index, profile in enumerate(app.store.profiles, 1):
                print(f"{index}. {profile}")
            return 0

        if args.add_profile:
            if not args.process:
                print("Error: --add-profile requires --process")
                return 2
            profile = profile_from_args(args)
            app.store.add(profile)
            print(f"Added profile {profile}")
            _notify_profiles_changed(app)
            return 0

        if args.edit_profile:
            existing = app.store.get(args.edit_profile)
            if existing is None:
                print(f"Error: no profile named '{args.edit_profile}'")
                return 1
            profile = profile_from_args(args, existing)
            app.store.replace(args.edit_profile, profile)
            print(f"Updated profile {profile}")
            _notify_profiles_changed(app)
            return 0

        if args.remove_profile:
            app.store.remove(args.remove_profile)
            print(f"Removed profile '{args.remove_profile}'")
            _notify_profiles_changed(app)
            return 0

        request = agent_request(args, app.config)
        if request is not None:
            try:
                reply = send_request(request, socket_path)
            except (OSError, ValueError) as e:
                print(f"Error: running agent did not answer: {e}")
                return 1
            if reply is not None:
                return _print_reply(reply)
            logger.debug("No running agent, running the command locally")

        app.setup(with_monitor=False)

        if args.list_modes:
            modes = app.engine.guard.control.enumerate_modes()
            if not modes:
                print("No resolutions found.")
                return 1
            for index, mode in enumerate(modes, 1):
                print(f"{index}. {mode}")
            return 0

        if args.status:
            print("No running agent.")
            print(app.engine.status().format(app.config.defaults))
            return 0

        if args.auto_switch:
            enabled = args.auto_switch == 'on'
            app.config.set_auto_switch_enabled(enabled)
            print(f"Auto profile switching {'enabled' if enabled else 'disabled'}")
            return 0

        if args.manual is not None:
            settings = parse_manual_settings(args.manual, app.config.manual)
            outcome = app.engine.apply_manual(settings)
            app.config.save_manual_settings(settings)
            _print_outcome(outcome)
            return 0 if outcome.ok else 1

        if args.reset:
            outcome = app.engine.reset()
            _print_outcome(outcome)
            return 0 if outcome.ok else 1

        if args.apply:
            profile = app.store.get(args.apply)
            if profile is None:
                print(f"Error: no profile named '{args.apply}'")
                return 1
            return _run_guarded(app, lambda: app.agent.submit_profile(profile))

        if args.set_resolution:
            from display_toggle.models import ResolutionSpec
            mode = ResolutionSpec.parse(args.set_resolution)
            return _run_guarded(app, lambda: app.agent.submit_apply_resolution(mode))

    except (DisplayToggleError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Command-line options."""
    parser = argparse.ArgumentParser(
        description="Display Toggle - per-application display profiles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Path to configuration file'
    )
    parser.add_argument(
        '--no-gui',
        action='store_true',
        help='Confirm resolution changes on the terminal instead of a dialog'
    )
    parser.add_argument(
        '--debug', '-d',
        action='store_true',
        help='Enable debug logging'
    )

    # Quick commands (sent to the running agent when there is one)
    parser.add_argument('--status', action='store_true', help='Show display state and exit')
    parser.add_argument('--list-modes', action='store_true', help='List supported resolutions and exit')
    parser.add_argument('--list-profiles', action='store_true', help='List profiles and exit')
    parser.add_argument(
        '--apply',
        metavar='NAME',
        help='Apply a profile (toggles it off if the running agent already has it active)'
    )
    parser.add_argument(
        '--manual',
        nargs='?',
        const='',
        metavar='V,H,B,C,G',
        help='Apply manual settings (omitted values use the last manual settings)'
    )
    parser.add_argument('--reset', action='store_true', help='Restore default color settings')
    parser.add_argument('--set-resolution', metavar='MODE', help='Change resolution, e.g. 1920x1080@144')
    parser.add_argument('--auto-switch', choices=['on', 'off'], help='Enable or disable automatic switching')

    # Profile editing
    parser.add_argument('--add-profile', metavar='NAME', help='Add a profile')
    parser.add_argument('--edit-profile', metavar='NAME', help='Edit a profile')
    parser.add_argument('--remove-profile', metavar='NAME', help='Remove a profile')
    parser.add_argument('--process', metavar='NAME', help='Process name the profile matches')
    parser.add_argument('--vibrance', type=int, help='Digital vibrance 0-100 (default 50)')
    parser.add_argument('--hue', type=int, help='Hue angle in degrees (default 0)')
    parser.add_argument('--brightness', type=float, help='Brightness 0.0-1.0 (default 0.5)')
    parser.add_argument('--contrast', type=float, help='Contrast 0.0-1.0 (default 0.5)')
    parser.add_argument('--gamma', type=float, help='Gamma (default 1.0)')
    parser.add_argument('--resolution', metavar='MODE', help="Profile resolution WxH@R[:D], or 'none'")
    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    # Setup logging
    setup_logging(args.debug, LOG_FILE)

    result = run_quick_command(args)
    if result is not None:
        return result

    # Run main application
    app = DisplayToggleApp(
        config_path=args.config,
        gui_enabled=not args.no_gui,
    )

    return app.run()


if __name__ == '__main__':
    sys.exit(main())
