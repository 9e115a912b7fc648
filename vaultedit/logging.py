import structlog, sys, pathlib, os

_LOG_STREAM = None
_LOG_PATH = None

def _default_log_path() -> pathlib.Path:
    return pathlib.Path(os.environ.get("VAULTEDIT_LOG", pathlib.Path.home() / ".local" / "state" / "vaultedit" / "vaultedit.log"))

def _log_handle():
    """Open (or reuse) the append-only 0600 log file stored under ~/.local/state/vaultedit."""
    global _LOG_STREAM, _LOG_PATH
    path = _default_log_path()
    if _LOG_STREAM is None or _LOG_PATH != path:
        if _LOG_STREAM is not None:
            _LOG_STREAM.close()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        os.chmod(path, 0o600)
        _LOG_STREAM = os.fdopen(fd, "a", buffering=1)
        _LOG_PATH = path
    return _LOG_STREAM

def _human_renderer(_, __, event_dict):
    """Render structlog event dictionaries into human-readable timestamped lines."""
    ts = event_dict.pop("timestamp", "")
    level = event_dict.pop("level", "").upper()
    event = event_dict.pop("event", "")
    extras = " ".join(f"{k}={event_dict[k]}" for k in sorted(event_dict))
    return f"{ts} [{level}] {event} {extras}".strip()

def _filter_secrets(_, __, event_dict):
    event_dict.pop("secret", None)
    event_dict.pop("passphrase", None)
    event_dict.pop("key", None)
    return event_dict

def get_logger(debug: bool = False):
    """Return a structlog logger; stderr in debug, otherwise ~/.local/state/vaultedit/."""
    processors = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.dict_tracebacks,
        _human_renderer,
    ]

    if not debug:
        processors = [_filter_secrets] + processors
        target = _log_handle()
    else:
        target = sys.stderr

    structlog.configure(
        processors=processors,
        logger_factory=structlog.PrintLoggerFactory(file=target),
    )
    return structlog.get_logger()
