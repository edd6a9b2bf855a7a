"""
main.py — Ember application entry point.

Parses CLI args, loads the YAML configuration, runs pre-flight checks, builds
the controller and serves it over the FastAPI web layer.
"""

from __future__ import annotations

import argparse
import sys
import traceback

# ──────────────────────────────────────────────────────────────
# ASCII banner
# ──────────────────────────────────────────────────────────────

_BANNER = r"""
  _____           _
 | ____|_ __ ___ | |__   ___ _ __
 |  _| | '_ ` _ \| '_ \ / _ \ '__|
 | |___| | | | | | |_) |  __/ |
 |_____|_| |_| |_|_.__/ \___|_|

                 Ember  v1.0
   Assistive communication for unclear speech
"""


# ──────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ember",
        description="Ember — speech interpretation and confirmation backend",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument(
        "--config",
        default=None,
        help="Path to ember.yaml (default: EMBER_CONFIG or config/ember.yaml)",
    )
    p.add_argument(
        "--host",
        default=None,
        help="Bind address for the web server (overrides web.host)",
    )
    p.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the web server (overrides web.port)",
    )
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN", "ERROR"],
        default=None,
        help="Minimum log level for stderr output (overrides logging.level)",
    )
    p.add_argument(
        "--demo",
        action="store_true",
        help="Simulate every smart-home action instead of calling SmartThings",
    )
    p.add_argument(
        "--no-voice-feedback",
        action="store_true",
        help="Disable local pyttsx3 announcements",
    )
    return p


def _overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {}
    if args.host is not None:
        overrides.setdefault("web", {})["host"] = args.host
    if args.port is not None:
        overrides.setdefault("web", {})["port"] = args.port
    if args.log_level is not None:
        overrides.setdefault("logging", {})["level"] = args.log_level
    if args.demo:
        overrides.setdefault("smartthings", {})["demo_mode"] = True
    if args.no_voice_feedback:
        overrides.setdefault("feedback", {})["enabled"] = False
    return overrides


# ──────────────────────────────────────────────────────────────
# Pre-flight checks
# ──────────────────────────────────────────────────────────────

def _check_python() -> None:
    """Abort if Python version is below 3.11."""
    if sys.version_info < (3, 11):
        print(
            f"[ERROR] Python 3.11+ required; running {sys.version}",
            file=sys.stderr,
        )
        sys.exit(1)
    print(f"[OK] Python {sys.version.split()[0]}")


def _check_services(config) -> None:
    """Report which external services have credentials; none are mandatory."""
    checks = {
        "ElevenLabs speech synthesis": config.tts.api_key,
        "Gemini interpretation": config.gemini.api_key,
        "Twilio telephony": config.twilio.account_sid and config.twilio.auth_token
        and config.twilio.from_number,
        "SmartThings": config.smartthings.token or config.smartthings.demo_mode,
    }
    for name, ok in checks.items():
        if ok:
            print(f"[OK] {name} configured")
        else:
            print(f"[WARN] {name} not configured — feature disabled", file=sys.stderr)


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

def main() -> int:
    """Application entry point. Returns process exit code."""
    print(_BANNER)

    parser = _build_parser()
    args = parser.parse_args()

    # 1. Python version check
    _check_python()

    # 2. Configuration
    from ember.core.config import load_config
    try:
        config = load_config(args.config, overrides=_overrides(args))
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    # 3. Logging
    from ember.core.logger import configure_logging
    log = configure_logging(config.logging.log_dir, config.logging.level)
    log.info("main", "args_parsed", {
        "config": args.config,
        "host": config.web.host,
        "port": config.web.port,
        "log_level": config.logging.level,
        "demo": config.smartthings.demo_mode,
    })

    # 4. Service credentials
    _check_services(config)

    # 5. Controller + web server
    exit_code = 0
    try:
        from ember.pipeline.controller import EmberController
        from ember.web.app import start_web_server

        controller = EmberController.from_config(config)
        log.info("main", "controller_ready", {"class": type(controller).__name__})

        print(f"[INFO] Web API → http://{config.web.host}:{config.web.port}/")
        print("       Press Ctrl-C to stop.")
        start_web_server(controller, host=config.web.host, port=config.web.port)
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted — shutting down…")
    except Exception:                              # noqa: BLE001
        tb = traceback.format_exc()
        print(tb, file=sys.stderr)
        log.critical("main", "unhandled_exception", {"traceback": tb})
        exit_code = 1
    finally:
        log.flush()

    print(f"[INFO] Ember exited with code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
