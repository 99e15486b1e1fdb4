"""Automatically resize an EBS volume which is running out of space.

Checks how full the filesystem on the root EBS volume (or the given devices)
is. If usage is above the threshold, the volume is enlarged via the EC2 API
and the partition and filesystem are grown to match.
"""

from pathlib import Path
from typing import List, Optional

import resize_thyself
import resize_thyself.resize
import resize_thyself.util.logging
import structlog
from resize_thyself.config import DEFAULT_CONFIG_FILE, load_config
from resize_thyself.errors import ResizeError
from resize_thyself.util.typer_utils import ResizeTyperApp, ensure_root
from typer import Exit, Option, echo

app = ResizeTyperApp(
    "resize-thyself",
    context_settings={"help_option_names": ["-h", "--help"]},
    add_completion=False,
)


def show_version(value: bool):
    if value:
        echo(f"resize-thyself {resize_thyself.__version__}")
        raise Exit()


@app.command(help=__doc__)
def resize_thyself_cmd(
    threshold: Optional[int] = Option(
        None,
        "--threshold",
        metavar="PERCENT",
        help="How full should the disk be before acting? [default: 90]",
    ),
    grow_percent: Optional[int] = Option(
        None,
        "--grow-percent",
        metavar="PERCENT",
        help="How much to grow the volume by. [default: 10]",
    ),
    devices: Optional[List[str]] = Option(
        None,
        "--device",
        help=(
            "EBS device name to inspect, can be given multiple times. "
            "Defaults to the root device from instance metadata."
        ),
    ),
    poll_interval: Optional[float] = Option(
        None,
        "--poll-interval",
        metavar="SECONDS",
        help="Time between volume modification status checks. [default: 60]",
    ),
    max_poll_attempts: Optional[int] = Option(
        None,
        "--max-poll-attempts",
        help=(
            "Give up waiting for the volume modification after so many "
            "status checks. Waits indefinitely by default."
        ),
    ),
    config_file: Path = Option(
        DEFAULT_CONFIG_FILE,
        "--config",
        dir_okay=False,
        help="Path to an optional config file.",
    ),
    logfile: Optional[Path] = Option(
        None,
        dir_okay=False,
        writable=True,
        help="Append log output to this file.",
    ),
    verbose: bool = Option(
        False, "--verbose", "-v", help="Be more verbose."
    ),
    dryrun: bool = Option(
        False, "--dryrun", "-d", help="Dry run (don't resize)."
    ),
    version: Optional[bool] = Option(
        None,
        "--version",
        callback=show_version,
        is_eager=True,
        help="Show version.",
    ),
):
    main_log_file = open(logfile, "a") if logfile else None
    resize_thyself.util.logging.init_logging(verbose, main_log_file)
    log = structlog.get_logger()

    try:
        config = load_config(
            log,
            config_file,
            threshold=threshold,
            grow_percent=grow_percent,
            poll_interval=poll_interval,
            max_poll_attempts=max_poll_attempts,
            devices=devices,
            dryrun=dryrun,
            verbose=verbose,
        )
        if not config.dryrun:
            ensure_root()

        log.info(
            "resize-thyself-start",
            threshold=config.threshold,
            growth_fraction=config.growth_fraction,
            dryrun=config.dryrun,
        )
        resized = resize_thyself.resize.run(config)
        log.info("resize-thyself-finished", resized=resized)
    except ResizeError as e:
        log.error(
            "resize-thyself-failed",
            _replace_msg="{error_class}: {error}",
            error_class=e.__class__.__name__,
            error=str(e),
            exc_info=verbose,
        )
        raise Exit(e.exit_code)
    finally:
        if main_log_file:
            main_log_file.close()
