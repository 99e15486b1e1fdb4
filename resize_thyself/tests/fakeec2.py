"""Canned EC2 API data for Stubber responses."""

INSTANCE_ID = "i-0123456789abcdef0"
VOLUME_ID = "vol-0123456789abcdef0"

ATTACHMENT_FILTER = [
    {"Name": "attachment.instance-id", "Values": [INSTANCE_ID]}
]


def volume(volume_id=VOLUME_ID, size=100, device="/dev/xvda"):
    return {
        "VolumeId": volume_id,
        "Size": size,
        "State": "in-use",
        "Attachments": [
            {
                "Device": device,
                "InstanceId": INSTANCE_ID,
                "State": "attached",
                "VolumeId": volume_id,
            }
        ],
    }


def modification(state, volume_id=VOLUME_ID, size=110, progress=0):
    return {
        "VolumeId": volume_id,
        "ModificationState": state,
        "TargetSize": size,
        "Progress": progress,
    }
