"""Grow EBS volumes which are running out of space.

For every inspected device, we find the mounted partition and check its
usage. If it's above the threshold, the EBS volume is enlarged, we wait for
EC2 to finish the modification, and then grow the partition and filesystem.
"""

import time
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

import structlog
from resize_thyself import ec2
from resize_thyself.disk import (
    Disk,
    needs_resize,
    normalize_device_name,
    resolve_kernel_device,
    resolve_mount,
    usage_ratio,
)
from resize_thyself.errors import CloudApiError, ResizeTimeout
from resize_thyself.metadata import fetch_instance_metadata
from resize_thyself.util.runners import Runner

log = structlog.get_logger()


class ResizeState(Enum):
    IDLE = "idle"
    REQUEST_SENT = "request-sent"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"


def new_volume_size(current_size, growth_fraction):
    """Returns the grown size in whole GiB, rounding halves up.

    The result is always larger than `current_size` as EC2 refuses
    modifications which don't change anything.
    """
    size = Decimal(current_size) * (1 + Decimal(str(growth_fraction)))
    size = int(size.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return max(size, current_size + 1)


class VolumeResizer:
    """Enlarges an EBS volume and waits until EC2 reports completion.

    IDLE -> REQUEST_SENT -> [POLLING ->] COMPLETED, or FAILED on errors.
    A dry run stays IDLE: EC2 only checks our permissions.
    """

    def __init__(self, client, config, sleep=None):
        self.client = client
        self.config = config
        self.sleep = sleep or time.sleep
        self.state = ResizeState.IDLE
        self.attempts = 0

    def _transition(self, state, **kw):
        log.debug(
            "resize-volume-state",
            old=self.state.value,
            new=state.value,
            **kw,
        )
        self.state = state

    def resize(self, volume):
        # Grows by at least 1 GiB, EC2 rejects a ModifyVolume to the same
        # size.
        size = new_volume_size(volume.size, self.config.growth_fraction)
        try:
            modification = ec2.modify_volume(
                self.client, volume.volume_id, size, dryrun=self.config.dryrun
            )
        except CloudApiError as e:
            if self.config.dryrun:
                # A successful dry run is reported as DryRunOperation error.
                log.info(
                    "resize-volume-dryrun",
                    _replace_msg=(
                        "Would resize {volume_id} from {old_size} to "
                        "{size} GiB, EC2 said: {code}"
                    ),
                    volume_id=volume.volume_id,
                    old_size=volume.size,
                    size=size,
                    code=e.code,
                    error=str(e),
                )
                return self.state
            self._transition(ResizeState.FAILED, error=str(e))
            raise

        if self.config.dryrun:
            return self.state

        self._transition(
            ResizeState.REQUEST_SENT,
            modification_state=modification.get("ModificationState"),
        )
        if ec2.is_modification_complete(modification):
            self._transition(ResizeState.COMPLETED)
        else:
            self._transition(ResizeState.POLLING)
            self.wait_for_completion(volume.volume_id)

        log.info(
            "resize-volume-completed",
            _replace_msg="{volume_id} is now {size} GiB",
            volume_id=volume.volume_id,
            size=size,
        )
        return self.state

    def wait_for_completion(self, volume_id):
        """Polls the modification status until it is completed.

        Without `max_poll_attempts` this waits as long as it takes. Errors
        while querying the status are not retried.
        """
        modification_state = None
        max_attempts = self.config.max_poll_attempts
        while True:
            if max_attempts is not None and self.attempts >= max_attempts:
                self._transition(ResizeState.FAILED)
                raise ResizeTimeout(
                    volume_id, self.attempts, modification_state
                )
            self.sleep(self.config.poll_interval)
            self.attempts += 1
            try:
                modification = ec2.describe_volume_modification(
                    self.client, volume_id
                )
            except CloudApiError as e:
                self._transition(ResizeState.FAILED, error=str(e))
                raise

            modification_state = modification.get("ModificationState")
            log.info(
                "ec2-modification-poll",
                volume_id=volume_id,
                modification_state=modification_state,
                progress=modification.get("Progress"),
                attempt=self.attempts,
            )
            if ec2.is_modification_complete(modification):
                self._transition(ResizeState.COMPLETED)
                return


def resize_device(cloud_device, client, instance_id, config, run):
    """Grows the volume behind `cloud_device` if it's too full.

    Returns True if the device has been resized.
    """
    kernel_device = resolve_kernel_device(cloud_device)
    mount = resolve_mount(kernel_device, config.mount_table)
    ratio = usage_ratio(mount.mount_point, run)

    if not needs_resize(ratio, config.threshold):
        log.info(
            "resize-device-not-needed",
            _replace_msg="{mount_point} doesn't need to be resized",
            mount_point=mount.mount_point,
            ratio=ratio,
            threshold=config.threshold,
        )
        return False

    # Check the partition name before touching the volume.
    disk = Disk(mount.partition, run)
    volume = ec2.find_volume(client, instance_id, cloud_device)
    VolumeResizer(client, config).resize(volume)
    disk.grow()
    return True


def run(config):
    """Inspects all configured devices, or the root device by default."""
    metadata = fetch_instance_metadata()
    client = ec2.connect(metadata.region)
    runner = Runner(dryrun=config.dryrun)
    devices = [normalize_device_name(d) for d in config.devices]
    if not devices:
        devices = [metadata.root_device]

    resized = []
    for device in devices:
        log.info(
            "resize-device-start",
            _replace_msg="Inspecting EBS device {device}",
            device=device,
        )
        if resize_device(
            device, client, metadata.instance_id, config, runner
        ):
            resized.append(device)

    return resized
