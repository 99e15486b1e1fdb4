# Structured logging setup, adapted from fc.util.logging.

from datetime import datetime
import io
import json
import os
import string
import structlog
import sys
import syslog
import traceback

try:
    import colorama
except ImportError:
    colorama = None

try:
    import systemd.journal as journal
except ImportError:
    journal = None

SYSLOG_IDENTIFIER = "resize-thyself"
_EVENT_WIDTH = 30  # pad the event name to so many characters

if sys.stdout.isatty() and colorama:
    RESET_ALL = colorama.Style.RESET_ALL
    BRIGHT = colorama.Style.BRIGHT
    DIM = colorama.Style.DIM
    RED = colorama.Fore.RED
    BLUE = colorama.Fore.BLUE
    CYAN = colorama.Fore.CYAN
    MAGENTA = colorama.Fore.MAGENTA
    YELLOW = colorama.Fore.YELLOW
    GREEN = colorama.Fore.GREEN
else:
    RESET_ALL = BRIGHT = DIM = RED = BLUE = ""
    CYAN = MAGENTA = YELLOW = GREEN = ""

COLORS = [RESET_ALL, BRIGHT, DIM, RED, BLUE, CYAN, MAGENTA, YELLOW, GREEN]

CALLER_KEYS = ("pathname", "func_name", "lineno", "module")

_initialized = False


def logging_initialized():
    return _initialized


class PartialFormatter(string.Formatter):
    """
    A string formatter that doesn't break if values are missing or formats
    are wrong. Used for `_replace_msg` templates.

    formatter = PartialFormatter(missing='<missing>')
    formatter.format("{exists} {missing}", exists=1) == "1 <missing>"
    """

    def __init__(self, missing="<missing>", bad_format="<bad format>"):
        self.missing = missing
        self.bad_format = bad_format

    def get_field(self, field_name, args, kwargs):
        try:
            return super().get_field(field_name, args, kwargs)
        except (KeyError, AttributeError):
            return None, field_name

    def format_field(self, value, format_spec):
        if value is None:
            return self.missing
        try:
            return super().format_field(value, format_spec)
        except ValueError:
            return self.bad_format


def format_replace_msg(event_dict):
    replace_msg = event_dict.pop("_replace_msg", None)
    if replace_msg is None:
        return None
    return PartialFormatter().format(replace_msg, **event_dict)


class MultiOptimisticLoggerFactory:
    def __init__(self, **factories):
        self.factories = factories

    def __call__(self, *args):
        loggers = {k: f() for k, f in self.factories.items()}
        return MultiOptimisticLogger(loggers)


class MultiOptimisticLogger:
    """
    Distributes messages to multiple loggers. The keys of `loggers`
    correspond to the keys of the message dict produced by `MultiRenderer`.
    Loggers without a message are skipped. Errors in sub loggers are ignored.
    """

    def __init__(self, loggers):
        self.loggers = loggers

    def __repr__(self):
        return "<MultiOptimisticLogger {}>".format(list(self.loggers))

    def msg(self, **messages):
        for name, logger in self.loggers.items():
            try:
                line = messages.get(name)
                if line:
                    logger.msg(line)
            except Exception:
                # Failing to log must never abort a resize.
                pass

    def __getattr__(self, name):
        return self.msg


class JournalLogger:
    def msg(self, message):
        journal.send(**message)


class ConsoleFileRenderer:
    """
    Renders `event_dict` aligned and in colors for the console, and the
    same line without colors for the log file.
    """

    LEVELS = ["critical", "error", "warn", "warning", "info", "debug"]

    LEVEL_COLORS = {
        "critical": RED,
        "error": RED,
        "warn": YELLOW,
        "warning": YELLOW,
        "info": GREEN,
        "debug": GREEN,
    }

    def __init__(self, min_level, show_caller_info=False):
        self.min_level = self.LEVELS.index(min_level.lower())
        self.show_caller_info = show_caller_info
        if colorama is not None and sys.stdout.isatty():
            colorama.init()

    def __call__(self, logger, method_name, event_dict):
        out = io.StringIO()
        replace_msg = format_replace_msg(event_dict)

        caller = [event_dict.pop(k, None) for k in CALLER_KEYS]
        event_dict.pop("pid", None)

        ts = event_dict.pop("timestamp", None)
        if ts is not None:
            out.write(DIM + str(ts) + RESET_ALL + " ")

        level = event_dict.pop("level", method_name)
        out.write(
            self.LEVEL_COLORS.get(level, "")
            + BRIGHT
            + level[0].upper()
            + RESET_ALL
            + " "
        )

        event = event_dict.pop("event")
        out.write(BRIGHT + event.ljust(_EVENT_WIDTH) + RESET_ALL + " ")

        if self.show_caller_info and caller[0]:
            out.write("[" + BLUE + "{}:{}".format(caller[0], caller[2]))
            out.write(RESET_ALL + "] ")

        stdout = event_dict.pop("stdout", None)
        stderr = event_dict.pop("stderr", None)
        exception_traceback = event_dict.pop("exception_traceback", None)

        if replace_msg:
            out.write(replace_msg)
        else:
            out.write(
                " ".join(
                    CYAN + key + RESET_ALL + "=" + MAGENTA
                    + repr(event_dict[key]) + RESET_ALL
                    for key in sorted(event_dict)
                )
            )

        if stdout:
            out.write("\n" + DIM + prefix("out", stdout) + RESET_ALL)
        if stderr:
            out.write("\n" + prefix("err", stderr))
        if exception_traceback is not None:
            out.write("\n" + prefix("exception", exception_traceback))

        console = out.getvalue()
        plain = console
        for color in COLORS:
            if color:
                plain = plain.replace(color, "")

        # Filter according to the -v switch when outputting to the console.
        if self.LEVELS.index(level) > self.min_level:
            console = ""

        return {"console": console, "file": plain}


def prefix(prefix, text):
    text = text.rstrip("\n")
    return "{}>\t".format(prefix) + text.replace(
        "\n", "\n{}>\t".format(prefix)
    )


class MultiRenderer:
    """
    Calls multiple renderers with a shallow copy of the event dict and merges
    their results, a dict of logger name to message. Should be last in the
    processor chain. Errors in renderers are ignored.
    """

    def __init__(self, **renderers):
        self.renderers = renderers

    def __call__(self, logger, method_name, event_dict):
        merged_messages = {}
        for renderer in self.renderers.values():
            try:
                messages = renderer(logger, method_name, event_dict.copy())
                merged_messages.update(messages)
            except Exception:
                pass

        return merged_messages


def add_pid(logger, method_name, event_dict):
    event_dict["pid"] = os.getpid()
    return event_dict


JOURNAL_LEVELS = {
    "critical": syslog.LOG_CRIT,
    "error": syslog.LOG_ERR,
    "warn": syslog.LOG_WARNING,
    "warning": syslog.LOG_WARNING,
    "info": syslog.LOG_INFO,
    "debug": syslog.LOG_DEBUG,
}

KEYS_TO_SKIP_IN_JOURNAL_MESSAGE = {
    "event",
    "exception_traceback",
    "level",
    "message",
    "pid",
    "stderr",
    "stdout",
    "timestamp",
    *CALLER_KEYS,
}


class SystemdJournalRenderer:
    def __init__(self, syslog_identifier, syslog_facility=syslog.LOG_LOCAL0):
        self.syslog_identifier = syslog_identifier
        self.syslog_facility = syslog_facility

    def __call__(self, logger, method_name, event_dict):
        message = event_dict["event"]
        replace_msg = format_replace_msg(event_dict)
        if replace_msg is not None:
            message += ": " + replace_msg
        else:
            kv = structlog.processors.KeyValueRenderer(sort_keys=True)(
                None,
                None,
                {
                    k: v
                    for k, v in event_dict.items()
                    if k not in KEYS_TO_SKIP_IN_JOURNAL_MESSAGE
                },
            )
            if kv:
                message += ": " + kv

        event_dict.pop("timestamp", None)
        event_dict.pop("pid", None)
        code = {
            "CODE_FILE": event_dict.pop("pathname", None),
            "CODE_FUNC": event_dict.pop("func_name", None),
            "CODE_LINE": event_dict.pop("lineno", None),
            "CODE_MODULE": event_dict.pop("module", None),
        }

        journal_msg = {
            k.upper(): self.dump_for_journal(v) for k, v in event_dict.items()
        }
        journal_msg.update({k: v for k, v in code.items() if v is not None})
        journal_msg["MESSAGE"] = message
        journal_msg["PRIORITY"] = JOURNAL_LEVELS.get(
            event_dict.get("level"), syslog.LOG_INFO
        )
        journal_msg["SYSLOG_FACILITY"] = self.syslog_facility
        journal_msg["SYSLOG_IDENTIFIER"] = self.syslog_identifier

        return {"journal": journal_msg}

    def handle_json_fallback(self, obj):
        """Supports obj.__structlog__() like structlog's JSON renderer."""
        try:
            return obj.__structlog__()
        except AttributeError:
            return repr(obj)

    def dump_for_journal(self, obj):
        """Encode values as JSON, except strings.
        Strings are kept so journalctl shows line breaks properly.
        """
        if isinstance(obj, str):
            return obj
        elif isinstance(obj, datetime):
            return datetime.isoformat(obj)
        else:
            return json.dumps(obj, default=self.handle_json_fallback)


def format_exc_info(logger, name, event_dict):
    """Renders exc_info into separate fields for structured targets."""
    exc_info = event_dict.pop("exc_info", None)
    if not exc_info:
        return event_dict

    if isinstance(exc_info, BaseException):
        exc_info = (type(exc_info), exc_info, exc_info.__traceback__)
    elif not isinstance(exc_info, tuple):
        exc_info = sys.exc_info()

    exception_class = exc_info[0]
    event_dict["exception_traceback"] = "".join(
        traceback.format_exception(*exc_info)
    )
    event_dict["exception_msg"] = str(exc_info[1])
    event_dict["exception_class"] = (
        exception_class.__module__ + "." + exception_class.__name__
    )
    return event_dict


def init_logging(verbose, main_log_file=None):
    global _initialized

    multi_renderer = MultiRenderer(
        journal=SystemdJournalRenderer(SYSLOG_IDENTIFIER, syslog.LOG_LOCAL1),
        text=ConsoleFileRenderer(
            min_level="debug" if verbose else "info",
            show_caller_info=verbose,
        ),
    )

    processors = [
        add_pid,
        structlog.processors.add_log_level,
        format_exc_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso", utc=False),
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.PATHNAME,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.MODULE,
            ],
            additional_ignores=[__name__],
        ),
        multi_renderer,
    ]

    loggers = {}

    if main_log_file:
        loggers["file"] = structlog.PrintLoggerFactory(main_log_file)
    if journal:
        loggers["journal"] = JournalLogger

    # When stdout is connected to the journal, console output would show up
    # twice.
    if not (journal and os.environ.get("JOURNAL_STREAM")):
        loggers["console"] = structlog.PrintLoggerFactory(sys.stderr)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.BoundLogger,
        logger_factory=MultiOptimisticLoggerFactory(**loggers),
    )
    _initialized = True
