"""Application entrypoint.

    python main.py record --out transcript.txt
    python main.py format transcript.txt --chair "John" --minutes-by "Kim"
    python main.py serve
    python main.py config token-endpoint http://localhost:8000/api/deepgram-token
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path

import structlog

from config import JsonConfigStore, ServerSettings
from errors import ConfigError, MinutesError
from interfaces import ConfigStore
from logging_setup import configure_logging
from minutes_formatter import DashscopeTextGenerator, EndpointMinutesFormatter, MinutesFormatter
from minutes_service import MinutesService
from models import MeetingMetadata, MeetingType, SessionState
from recorder import SoundDeviceRecorder
from session_controller import RecordingSession
from token_broker import EndpointTokenIssuer, TokenBroker
from transcriber import DeepgramStreamClient

logger = structlog.get_logger(__name__)


class ConsoleView:
    """Prints the live transcript on one line and errors on stderr."""

    def __init__(self) -> None:
        self._last_len = 0

    def on_transcript(self, text: str) -> None:
        tail = text[-100:]
        padding = " " * max(0, self._last_len - len(tail))
        print(f"\r{tail}{padding}", end="", flush=True)
        self._last_len = len(tail)

    def on_error(self, code: str, message: str) -> None:
        print(f"\n{code}: {message}", file=sys.stderr)

    def on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        if to_state == SessionState.RECORDING:
            print("Recording... press Enter to stop.")


def build_session(store: ConfigStore, view: ConsoleView) -> RecordingSession:
    endpoint = store.get_token_endpoint()
    broker = TokenBroker(
        issuer=EndpointTokenIssuer(endpoint) if endpoint else None,
        static_secret=store.get_deepgram_api_key(),
    )
    return RecordingSession(
        recorder=SoundDeviceRecorder(),
        stream=DeepgramStreamClient(broker, language=store.get_language()),
        on_state_change=view.on_state_change,
        on_transcript=view.on_transcript,
        on_error=view.on_error,
    )


def build_minutes_service(store: ConfigStore, endpoint: str = "") -> MinutesService:
    endpoint = endpoint or store.get_minutes_endpoint()
    api_key = store.get_dashscope_api_key()
    if api_key:
        return MinutesService(MinutesFormatter(DashscopeTextGenerator(api_key)))
    if endpoint:
        return MinutesService(EndpointMinutesFormatter(endpoint))
    raise ConfigError("Set DASHSCOPE_API_KEY or a minutes endpoint to format minutes")


def cmd_record(args: argparse.Namespace, store: JsonConfigStore) -> int:
    view = ConsoleView()
    session = build_session(store, view)
    session.start_session()
    if session.state != SessionState.RECORDING:
        return 1
    try:
        input()
    except KeyboardInterrupt:
        session.cancel_session("Recording interrupted")
    except EOFError:
        pass
    finally:
        transcript = session.stop_session()

    print()
    if not transcript:
        print("No speech was transcribed.", file=sys.stderr)
        return 1
    Path(args.out).write_text(transcript + "\n", encoding="utf-8")
    print(f"Transcript saved to {args.out}")
    return 0


def cmd_format(args: argparse.Namespace, store: JsonConfigStore) -> int:
    transcript = Path(args.transcript).read_text(encoding="utf-8")
    meta = MeetingMetadata(
        date=args.date,
        type=MeetingType(args.type),
        chairperson=args.chair,
        present=args.present,
        apologies=args.apologies,
        minutes_by=args.minutes_by,
    )
    service = build_minutes_service(store, args.endpoint)
    result = service.produce(transcript, meta)
    if result.warning:
        print(result.warning, file=sys.stderr)
    Path(args.out).write_text(result.minutes.html_content + "\n", encoding="utf-8")
    print(result.minutes.summary)
    print(f"Minutes saved to {args.out}")
    return 0


CONFIG_SETTERS = {
    "deepgram-api-key": "set_deepgram_api_key",
    "token-endpoint": "set_token_endpoint",
    "dashscope-api-key": "set_dashscope_api_key",
    "minutes-endpoint": "set_minutes_endpoint",
    "language": "set_language",
}


def cmd_config(args: argparse.Namespace, store: JsonConfigStore) -> int:
    getattr(store, CONFIG_SETTERS[args.key])(args.value)
    print(f"Saved {args.key}")
    return 0


def cmd_serve(args: argparse.Namespace, store: JsonConfigStore) -> int:
    import uvicorn

    from server import create_app

    uvicorn.run(create_app(ServerSettings.from_env()), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="harmony-minutes", description="Record club meetings and format minutes.")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    sub = p.add_subparsers(dest="command", required=True)

    rec = sub.add_parser("record", help="Record and transcribe a meeting")
    rec.add_argument("--out", default="transcript.txt", help="Where to save the transcript")
    rec.set_defaults(func=cmd_record)

    fmt = sub.add_parser("format", help="Format a transcript into minutes")
    fmt.add_argument("transcript", help="Transcript text file")
    fmt.add_argument("--chair", required=True, help="Chairperson")
    fmt.add_argument("--minutes-by", required=True, help="Who took the minutes")
    fmt.add_argument("--date", default=date.today().isoformat(), help="Meeting date")
    fmt.add_argument("--type", default=MeetingType.MEETING.value, choices=[t.value for t in MeetingType])
    fmt.add_argument("--present", default="", help="Members present")
    fmt.add_argument("--apologies", default="", help="Apologies received")
    fmt.add_argument("--endpoint", default="", help="Minutes formatting endpoint URL")
    fmt.add_argument("--out", default="minutes.html", help="Where to save the minutes HTML")
    fmt.set_defaults(func=cmd_format)

    cfg = sub.add_parser("config", help="Save a client setting")
    cfg.add_argument("key", choices=sorted(CONFIG_SETTERS))
    cfg.add_argument("value")
    cfg.set_defaults(func=cmd_config)

    srv = sub.add_parser("serve", help="Run the token and formatting endpoints")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)
    srv.set_defaults(func=cmd_serve)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(json_logs=args.json_logs or args.command == "serve")
    store = JsonConfigStore()
    try:
        return args.func(args, store)
    except MinutesError as exc:
        logger.error("cli.failed", code=exc.code, error=exc.message)
        print(f"{exc.code}: {exc.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
