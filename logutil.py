import os
import traceback

import config

LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}

_COLORS = {"WARN": "\x1b[33m", "ERROR": "\x1b[31m"}


def enabled(level):
    threshold = LEVELS.get(getattr(config, "LOG_LEVEL", "INFO"), 20)
    return LEVELS.get(level, 20) >= threshold


def _write_file(text):
    path = getattr(config, "LOG_FILE_PATH", None)
    if not path:
        return
    mode = "a" if getattr(config, "LOG_FILE_APPEND", True) else "w"
    try:
        with open(path, mode, encoding="utf-8") as f:
            f.write(text + "\n")
    except OSError:
        # stop writing after the first failure
        config.LOG_FILE_PATH = None
    else:
        config.LOG_FILE_APPEND = True


def log(scope, msg, level="INFO"):
    if not enabled(level):
        return
    text = f"[{level} pid{os.getpid()} {scope}] {msg}"
    _write_file(text)
    use_color = getattr(config, "LOG_COLOR", True) and os.getenv("NO_COLOR") is None
    if use_color and level in _COLORS:
        text = f"{_COLORS[level]}{text}\x1b[0m"
    print(text)


def log_exception(scope, msg):
    log(scope, f"{msg}\n{traceback.format_exc().rstrip()}", level="ERROR")
