import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from resize_thyself.errors import ConfigurationError

DEFAULT_CONFIG_FILE = Path("/etc/resize-thyself.conf")
CONFIG_SECTION = "resize-thyself"


@dataclass(frozen=True)
class Config:
    """Settings for a single run. Built once at startup, read-only after."""

    threshold: float = 0.90
    growth_fraction: float = 0.10
    dryrun: bool = False
    verbose: bool = False
    poll_interval: float = 60
    # None polls until EC2 reports the modification as completed.
    max_poll_attempts: Optional[int] = None
    devices: tuple[str, ...] = ()
    mount_table: str = "/proc/mounts"

    def __post_init__(self):
        if not 0 < self.threshold < 1:
            raise ConfigurationError(
                f"threshold must be between 0 and 100 percent, "
                f"got {self.threshold * 100:g}"
            )
        if self.growth_fraction <= 0:
            raise ConfigurationError(
                f"grow percent must be positive, "
                f"got {self.growth_fraction * 100:g}"
            )
        if self.poll_interval <= 0:
            raise ConfigurationError(
                f"poll interval must be positive, got {self.poll_interval}"
            )
        if self.max_poll_attempts is not None and self.max_poll_attempts < 1:
            raise ConfigurationError(
                f"max poll attempts must be at least 1, "
                f"got {self.max_poll_attempts}"
            )


def parse_config_file(log, config_file: Optional[Path]):
    config = configparser.ConfigParser()
    if config_file:
        if config_file.is_file():
            log.debug("parse-config-file", config_file=str(config_file))
            config.read(config_file)
        else:
            log.debug(
                "parse-config-file-not-found", config_file=str(config_file)
            )

    return config


def load_config(
    log,
    config_file: Optional[Path] = None,
    threshold: Optional[int] = None,
    grow_percent: Optional[int] = None,
    poll_interval: Optional[float] = None,
    max_poll_attempts: Optional[int] = None,
    devices=(),
    dryrun=False,
    verbose=False,
) -> Config:
    """Merges the config file with command line values into a `Config`.

    Percent values are whole numbers, as given on the command line.
    Command line values win over the config file if they are not None.
    """
    parser = parse_config_file(log, config_file)
    section = {}
    if parser.has_section(CONFIG_SECTION):
        section = parser[CONFIG_SECTION]

    try:
        if threshold is None:
            threshold = int(section.get("threshold", 90))
        if grow_percent is None:
            grow_percent = int(section.get("grow-percent", 10))
        if poll_interval is None:
            poll_interval = float(section.get("poll-interval", 60))
        if max_poll_attempts is None and section.get("max-poll-attempts"):
            max_poll_attempts = int(section["max-poll-attempts"])
    except ValueError as e:
        raise ConfigurationError(f"invalid value in {config_file}: {e}") from e

    return Config(
        threshold=threshold / 100,
        growth_fraction=grow_percent / 100,
        dryrun=dryrun,
        verbose=verbose,
        poll_interval=poll_interval,
        max_poll_attempts=max_poll_attempts,
        devices=tuple(devices or ()),
    )
