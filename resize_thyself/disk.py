"""Inspect and grow the local side of an EBS volume.

EC2 reports the root volume under the name it was attached with, for example
`/dev/xvda` or `/dev/sda1`. Depending on the instance type, the kernel shows
the same volume under that name or as an NVMe device like `/dev/nvme0n1p1`.
See https://docs.aws.amazon.com/AWSEC2/latest/UserGuide/device_naming.html
"""

import os
import re
from typing import NamedTuple

import structlog
from resize_thyself.errors import (
    AmbiguousMount,
    DeviceNotFound,
    InvalidPartition,
    SubprocessError,
    UsageParseError,
)

log = structlog.get_logger()

# Kernel device names to probe for a cloud device name, most specific first.
# The NVMe name is authoritative when present. Unlisted names are only
# probed as-is.
DEVICE_NAME_CANDIDATES = {
    "/dev/sda1": ("/dev/nvme0n1p1", "/dev/sda1"),
    "/dev/xvda": ("/dev/nvme0n1p1", "/dev/xvda"),
}

# Devices whose names end in a digit and separate partitions with "p".
NUMBERED_DEVICE_PREFIXES = ("nvme", "mmcblk", "loop")


def normalize_device_name(name):
    """Metadata sometimes reports `xvda` instead of `/dev/xvda`."""
    name = name.strip()
    if not name.startswith("/dev/"):
        name = "/dev/" + name
    return name


def device_candidates(cloud_device):
    return DEVICE_NAME_CANDIDATES.get(cloud_device, (cloud_device,))


def device_exists(path):
    return os.path.exists(path) and not os.path.isdir(path)


def resolve_kernel_device(cloud_device):
    """Returns the kernel device path for a device name reported by EC2."""
    candidates = device_candidates(cloud_device)
    for candidate in candidates:
        if device_exists(candidate):
            log.debug(
                "resolve-kernel-device",
                cloud_device=cloud_device,
                kernel_device=candidate,
            )
            return candidate

    raise DeviceNotFound(cloud_device, list(candidates))


class MountInfo(NamedTuple):
    partition: str
    mount_point: str


_r_mount_escape = re.compile(r"\\([0-7]{3})")


def _unescape_mount_field(field):
    return _r_mount_escape.sub(lambda m: chr(int(m.group(1), 8)), field)


def resolve_mount(kernel_device, mount_table="/proc/mounts"):
    """Finds the single mount whose device starts with `kernel_device`.

    A whole disk like `/dev/xvda` matches its partition `/dev/xvda1`. Zero or
    more than one match means we can't tell what to resize.
    """
    with open(mount_table) as f:
        lines = [l.rstrip("\n") for l in f if l.startswith(kernel_device)]

    if len(lines) != 1:
        log.error(
            "resolve-mount-ambiguous",
            _replace_msg=(
                "Expected exactly one mount for {device}, found {count}"
            ),
            device=kernel_device,
            count=len(lines),
            mounts=lines,
        )
        raise AmbiguousMount(kernel_device, lines)

    fields = lines[0].split()
    mount = MountInfo(
        _unescape_mount_field(fields[0]), _unescape_mount_field(fields[1])
    )
    log.debug(
        "resolve-mount",
        partition=mount.partition,
        mount_point=mount.mount_point,
    )
    return mount


def parse_df_output(df_output):
    """Returns the used/total ratio from `df` output.

    The header is the first line, our filesystem is on the second line.
    """
    lines = df_output.splitlines()
    try:
        fields = lines[1].split()
        total = float(fields[1])
        used = float(fields[2])
    except (IndexError, ValueError) as e:
        raise UsageParseError(
            f"unable to parse df output: {df_output!r}"
        ) from e
    if total <= 0:
        raise UsageParseError(f"df reports a total size of {total}")
    return used / total


def usage_ratio(mount_point, run):
    ratio = parse_df_output(run.df(mount_point, readonly=True))
    log.info(
        "disk-usage",
        _replace_msg="{mount_point} has a usage of {ratio:.1%}",
        mount_point=mount_point,
        ratio=ratio,
    )
    return ratio


def needs_resize(ratio, threshold):
    return ratio > threshold


_r_partition = re.compile(r"^(?P<device>.*?)(?P<number>[0-9]+)$")


class PartitionSpec(NamedTuple):
    device: str
    number: str

    @classmethod
    def parse(cls, partition):
        """Splits `/dev/sda1` into `/dev/sda` and `1`.

        NVMe devices end in a digit themselves and separate the partition
        number with a `p`: `/dev/nvme0n1p1` becomes `/dev/nvme0n1` and `1`.
        """
        m = _r_partition.match(partition)
        if not m:
            raise InvalidPartition(
                f"{partition} doesn't end in a partition number"
            )
        device, number = m.group("device"), m.group("number")

        separated = device.endswith("p") and device[-2:-1].isdigit()
        if separated:
            device = device[:-1]
        elif os.path.basename(device).startswith(NUMBERED_DEVICE_PREFIXES):
            raise InvalidPartition(
                f"{partition} looks like a whole device, not a partition"
            )

        if not device or (not separated and device[-1].isdigit()):
            raise InvalidPartition(
                f"{device} ends in a number? Should just be the device "
                f"part of {partition}"
            )
        return cls(device, number)


class Disk:
    """Grows a partition and its filesystem to fill the underlying device.

    This part doesn't know or care about the intended size. The EBS volume
    has already been resized, we only align the partition table and the
    filesystem with it.
    """

    def __init__(self, partition, run):
        self.partition = partition
        self.spec = PartitionSpec.parse(partition)
        self.run = run

    def grow_partition(self):
        log.info(
            "grow-partition",
            _replace_msg="Growing partition {number} on {device}",
            device=self.spec.device,
            number=self.spec.number,
        )
        args = (self.spec.device, self.spec.number)
        if self.run.dryrun:
            # growpart only reports what it would do.
            args = ("--dry-run",) + args
        try:
            self.run.growpart(*args, readonly=self.run.dryrun)
        except SubprocessError as e:
            # growpart exits 1 if the partition already fills the device.
            if e.returncode == 1 and "NOCHANGE" in (e.stdout or ""):
                log.info(
                    "grow-partition-nochange",
                    _replace_msg="Partition {partition} can't be grown",
                    partition=self.partition,
                )
                return
            raise

    def grow_filesystem(self):
        log.info(
            "grow-filesystem",
            _replace_msg="Growing filesystem on {partition}",
            partition=self.partition,
        )
        self.run.resize2fs(self.partition)

    def grow(self):
        """Enlarges partition and filesystem."""
        self.grow_partition()
        self.grow_filesystem()
