"""Find and modify the EBS volumes attached to this instance."""

from typing import NamedTuple

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError
from resize_thyself.errors import CloudApiError, NoAttachedVolume

log = structlog.get_logger()

MODIFICATION_COMPLETED = "completed"

API_EXCEPTIONS = (BotoCoreError, ClientError)


class CloudVolume(NamedTuple):
    volume_id: str
    size: int  # GiB
    device: str


def connect(region):
    return boto3.client("ec2", region_name=region)


def error_code(e):
    if isinstance(e, ClientError):
        return e.response.get("Error", {}).get("Code")
    return None


def attached_volumes(client, instance_id):
    paginator = client.get_paginator("describe_volumes")
    pages = paginator.paginate(
        Filters=[{"Name": "attachment.instance-id", "Values": [instance_id]}]
    )
    try:
        for page in pages:
            yield from page["Volumes"]
    except API_EXCEPTIONS as e:
        raise CloudApiError(
            f"describing volumes of {instance_id} failed: {e}"
        ) from e


def is_attached_as(volume, device):
    return any(
        a.get("Device") == device for a in volume.get("Attachments", [])
    )


def find_volume(client, instance_id, device):
    """Returns the volume attached to `instance_id` as `device`."""
    volumes = list(attached_volumes(client, instance_id))
    matches = [v for v in volumes if is_attached_as(v, device)]

    if not matches:
        log.error(
            "ec2-volume-not-attached",
            instance_id=instance_id,
            device=device,
            volumes=[v["VolumeId"] for v in volumes],
        )
        raise NoAttachedVolume(
            instance_id, device, [v["VolumeId"] for v in volumes]
        )

    if len(matches) > 1:
        # EC2 shouldn't allow this. Keep going with the first one, but make
        # it visible.
        log.warn(
            "ec2-volume-ambiguous",
            _replace_msg=(
                "Multiple volumes are attached as {device}: {volume_ids}. "
                "Using the first one."
            ),
            device=device,
            volume_ids=[v["VolumeId"] for v in matches],
        )

    volume = matches[0]
    log.info(
        "ec2-volume",
        _replace_msg=(
            "{volume_id} ({size} GiB) is attached to {instance_id} as "
            "{device}"
        ),
        volume_id=volume["VolumeId"],
        size=volume["Size"],
        instance_id=instance_id,
        device=device,
    )
    return CloudVolume(volume["VolumeId"], volume["Size"], device)


def modify_volume(client, volume_id, size, dryrun=False):
    """Requests a new size and returns the resulting modification record."""
    log.info(
        "ec2-modify-volume",
        _replace_msg="Requesting {size} GiB for {volume_id}",
        volume_id=volume_id,
        size=size,
        dryrun=dryrun,
    )
    try:
        response = client.modify_volume(
            VolumeId=volume_id, Size=size, DryRun=dryrun
        )
    except API_EXCEPTIONS as e:
        raise CloudApiError(
            f"modifying {volume_id} failed: {e}", code=error_code(e)
        ) from e
    return response["VolumeModification"]


def describe_volume_modification(client, volume_id):
    """Returns the most recent modification record for a volume."""
    try:
        response = client.describe_volumes_modifications(
            VolumeIds=[volume_id]
        )
    except API_EXCEPTIONS as e:
        raise CloudApiError(
            f"describing modification of {volume_id} failed: {e}"
        ) from e

    modifications = response.get("VolumesModifications", [])
    if not modifications:
        raise CloudApiError(f"no volume modifications found for {volume_id}")
    return modifications[-1]


def is_modification_complete(modification):
    return modification.get("ModificationState") == MODIFICATION_COMPLETED
