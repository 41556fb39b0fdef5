"""
Main CLI entry point for NeuroLock

This module provides the command-line interface: enrol, authenticate, delete
and list users, and run a system self-test. The process exit code is the
engine's Status value.
"""

import argparse
import logging
import signal
import sys
from typing import List, Optional

from ..core.config import *
from ..core.data_types import MentalTask
from ..core.errors import NeuroLockError
from ..core.secure import CancelToken
from ..acquisition.sources import open_session
from ..engine import NeuroLock, Outcome, Status, status_for


def print_banner() -> None:
    print("=" * 60)
    print("NeuroLock - Multi-factor Authentication via Brainwaves")
    print("=" * 60)


def print_section(title: str, *lines: str) -> None:
    print()
    print("=" * 40)
    print(f"  {title}")
    print("=" * 40)
    for line in lines:
        print(line)


def print_task(task: MentalTask) -> None:
    print(f"\nTask: {task.title}")
    print(f"Instructions: {task.instructions}")


def build_config(args) -> EngineConfig:
    """Engine configuration from parsed command-line arguments"""
    return EngineConfig(
        fs=args.fs,
        n_channels=args.channels,
        n_trials=args.trials,
        capture_duration=args.duration,
        threshold=args.threshold,
        max_attempts=args.attempts,
        adapt_rate=args.adapt_rate,
        notch_hz=args.notch,
        template_dir=args.template_dir,
        n_jobs=args.jobs,
        device=args.device,
        serial_port=args.serial_port,
    )


def build_session(args):
    if args.device == "synthetic":
        return open_session("synthetic", n_channels=args.channels, fs=args.fs,
                            tone_hz=args.tone_hz, tone_amplitude=args.tone_amplitude,
                            seed=args.seed)
    return open_session("brainflow", serial_port=args.serial_port, n_channels=args.channels)


def install_cancel_handler():
    """Turn Ctrl+C / SIGTERM into a cooperative cancellation"""
    token = CancelToken()

    def signal_handler(signum, frame):
        logging.info("Shutdown signal received")
        token.cancel()

    previous = {sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    return token, previous


def restore_signal_handlers(previous) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def cmd_enroll(engine: NeuroLock, args, cancel: CancelToken) -> Outcome:
    task = MentalTask(args.task)
    print_section("USER ENROLMENT",
                  f"Username: {args.username}",
                  f"Enrolment trials: {engine.config.n_trials}")
    print_task(task)
    print(f"\nYou will perform {engine.config.n_trials} trials. Try to maintain consistency.")

    rest = args.rest if args.rest is not None else (
        0.0 if args.device == "synthetic" else REST_BETWEEN_TRIALS)

    def on_trial(index: int, total: int) -> None:
        if index > 1 and rest > 0:
            print(f"Rest for {rest:.0f} seconds before next trial...")
            cancel.wait(rest)
        print(f"\n=== Trial {index}/{total} ===")

    with build_session(args) as session:
        outcome = engine.enroll_from_session(args.username, session, task=task,
                                             cancel=cancel, on_trial=on_trial)

    if outcome.ok:
        print_section("ENROLMENT SUCCESSFUL",
                      f"Template saved to: {engine.store.path_for(args.username)}")
    elif outcome.status == Status.ALREADY_ENROLLED:
        print(f"\nError: {outcome.message}")
        print(f"Delete existing template first with: neurolock delete {args.username}")
    else:
        print_section("ENROLMENT FAILED", outcome.message)
    return outcome


def cmd_auth(engine: NeuroLock, args, cancel: CancelToken) -> Outcome:
    print_section("USER AUTHENTICATION", f"Username: {args.username}")

    def on_attempt(index: int, total: int) -> None:
        print(f"\n=== Attempt {index}/{total} ===")

    with build_session(args) as session:
        outcome = engine.authenticate_from_session(args.username, session, task=args.task,
                                                   cancel=cancel, on_attempt=on_attempt)

    if outcome.status in (Status.OK, Status.REJECTED):
        result = outcome.result
        title = "AUTHENTICATION SUCCESSFUL" if outcome.ok else "AUTHENTICATION FAILED"
        print_section(title,
                      f"Similarity score: {result.score:.3f}",
                      f"Threshold: {engine.config.threshold:.3f}",
                      f"Attempts: {result.attempts}")
        if not outcome.ok:
            print("Access denied.")
    elif outcome.status == Status.NOT_ENROLLED:
        print(f"\nError: {outcome.message}")
        print(f"Enroll first with: neurolock enroll {args.username}")
    else:
        print_section("AUTHENTICATION ERROR", outcome.message)
    return outcome


def cmd_delete(engine: NeuroLock, args) -> Outcome:
    if not args.yes:
        try:
            answer = input(f"Are you sure you want to delete user '{args.username}'? (yes/no): ")
        except EOFError:
            answer = ""
        if answer.strip().lower() != "yes":
            print("Deletion cancelled.")
            return Outcome(Status.CANCELLED, None, "Deletion cancelled")

    outcome = engine.delete(args.username)
    if outcome.ok:
        print(f"User '{args.username}' deleted successfully.")
    else:
        print(f"Error: {outcome.message}")
    return outcome


def cmd_list(engine: NeuroLock) -> Outcome:
    outcome = engine.list_users()
    if not outcome.ok:
        print(f"Error: {outcome.message}")
        return outcome

    print(f"\nEnrolled users ({engine.config.template_dir}):")
    if not outcome.result:
        print("  (none)")
    for username in outcome.result:
        print(f"  - {username}")
    return outcome


def cmd_test(engine: NeuroLock, args) -> Outcome:
    print_section("SYSTEM TEST")
    try:
        session = build_session(args)
        session.connect()
    except NeuroLockError as e:
        logging.error(f"Capture initialization failed: {e}")
        session = None

    try:
        outcome = engine.self_test(session)
    finally:
        if session is not None:
            session.disconnect()

    for name, passed in outcome.result.items():
        print(f"  {'OK    ' if passed else 'FAILED'} {name}")
    if session is None:
        print("  FAILED Capture initialization")
        if outcome.ok:
            outcome = Outcome(Status.CAPTURE_ERROR, outcome.result, "Capture initialization failed")
    print_section("SYSTEM TEST COMPLETE")
    return outcome


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser"""
    parser = argparse.ArgumentParser(
        prog="neurolock",
        description="NeuroLock - Multi-factor authentication via brainwaves",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Enrol a user with synthetic data
  neurolock enroll alice

  # Authenticate against the stored template
  neurolock auth alice

  # Enrol from an OpenBCI board
  neurolock --device brainflow --serial-port /dev/ttyUSB0 enroll bob --task 2

Mental tasks:
  0: Eyes closed rest (default)
  1: Eyes open rest
  2: Mental arithmetic
  3: Motor imagery
  4: Visual imagery
        """
    )

    # Device options
    parser.add_argument("--device", choices=["synthetic", "brainflow"], default=DEFAULT_DEVICE,
                        help=f"EEG device (default: {DEFAULT_DEVICE})")
    parser.add_argument("--serial-port", default=SERIAL_PORT,
                        help=f"Serial port for BrainFlow (default: {SERIAL_PORT})")
    parser.add_argument("--fs", type=float, default=SAMPLING_RATE,
                        help=f"Sampling frequency (default: {SAMPLING_RATE})")
    parser.add_argument("--channels", type=int, default=NUM_CHANNELS,
                        help=f"Number of EEG channels (default: {NUM_CHANNELS})")
    parser.add_argument("--notch", type=float, choices=[50.0, 60.0], default=NOTCH_HZ,
                        help=f"Notch filter frequency (default: {NOTCH_HZ})")

    # Synthetic signal options
    parser.add_argument("--tone-hz", type=float, default=10.0,
                        help="Signature tone of the synthetic device in Hz (default: 10)")
    parser.add_argument("--tone-amplitude", type=float, default=50.0,
                        help="Signature tone amplitude of the synthetic device (default: 50)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for the synthetic device")

    # Enrolment / matching
    parser.add_argument("--template-dir", default=TEMPLATE_DIR,
                        help=f"Template directory (default: {TEMPLATE_DIR})")
    parser.add_argument("--trials", type=int, default=NUM_ENROLMENT_TRIALS,
                        help=f"Enrolment trials (default: {NUM_ENROLMENT_TRIALS})")
    parser.add_argument("--duration", type=float, default=CAPTURE_DURATION,
                        help=f"Seconds per trial (default: {CAPTURE_DURATION})")
    parser.add_argument("--rest", type=float, default=None,
                        help=f"Rest between enrolment trials in seconds "
                             f"(default: {REST_BETWEEN_TRIALS} on real devices, 0 for synthetic)")
    parser.add_argument("--threshold", type=float, default=SIMILARITY_THRESHOLD,
                        help=f"Similarity threshold (default: {SIMILARITY_THRESHOLD})")
    parser.add_argument("--attempts", type=int, default=MAX_AUTH_ATTEMPTS,
                        help=f"Authentication attempts (default: {MAX_AUTH_ATTEMPTS})")
    parser.add_argument("--adapt-rate", type=float, default=ADAPT_RATE,
                        help="Blend accepted trials into the template at this rate (default: off)")
    parser.add_argument("--jobs", type=int, default=1,
                        help="Parallel feature-extraction jobs (default: 1)")

    # Logging
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose logging")

    commands = parser.add_subparsers(dest="command", required=True)

    enroll = commands.add_parser("enroll", help="Enroll a new user")
    enroll.add_argument("username")
    enroll.add_argument("--task", type=int, choices=[t.value for t in MentalTask],
                        default=MentalTask.EYES_CLOSED_REST.value,
                        help="Mental task type (0-4)")

    auth = commands.add_parser("auth", help="Authenticate a user")
    auth.add_argument("username")
    auth.add_argument("--task", type=int, choices=[t.value for t in MentalTask], default=None,
                      help="Mental task type (default: the task the user enrolled with)")

    delete = commands.add_parser("delete", help="Delete user template")
    delete.add_argument("username")
    delete.add_argument("--yes", "-y", action="store_true",
                        help="Do not ask for confirmation")

    commands.add_parser("list", help="List enrolled users")
    commands.add_parser("test", help="Run system test")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Setup logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    print_banner()

    try:
        engine = NeuroLock(build_config(args))
    except NeuroLockError as e:
        logging.error(f"Invalid configuration: {e}")
        return int(Status.VALIDATION_ERROR)

    cancel, previous = install_cancel_handler()

    try:
        if args.command == "enroll":
            outcome = cmd_enroll(engine, args, cancel)
        elif args.command == "auth":
            outcome = cmd_auth(engine, args, cancel)
        elif args.command == "delete":
            outcome = cmd_delete(engine, args)
        elif args.command == "list":
            outcome = cmd_list(engine)
        else:
            outcome = cmd_test(engine, args)
    except NeuroLockError as e:
        # Device setup failures surface before the engine can wrap them
        logging.error(f"{args.command} failed: {e}")
        return int(status_for(e) or Status.CAPTURE_ERROR)
    finally:
        restore_signal_handlers(previous)

    return int(outcome.status)


if __name__ == "__main__":
    sys.exit(main())
