"""Client for the EC2 instance metadata service (IMDSv2)."""

from typing import NamedTuple

import requests
import stamina
import structlog
from resize_thyself.disk import normalize_device_name
from resize_thyself.errors import MetadataUnavailable

log = structlog.get_logger()

IMDS_URL = "http://169.254.169.254/latest"
TOKEN_TTL_SECONDS = 300

RETRY_EXCEPTIONS = (
    requests.ConnectionError,
    requests.Timeout,
)


class InstanceMetadata(NamedTuple):
    region: str
    instance_id: str
    root_device: str


class MetadataClient:
    def __init__(self, base_url=IMDS_URL, timeout=2):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    @stamina.retry(on=RETRY_EXCEPTIONS, attempts=3, wait_initial=0.5)
    def _request(self, method, path, headers):
        response = self.session.request(
            method,
            f"{self.base_url}/{path}",
            headers=headers,
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.text

    def token(self):
        return self._request(
            "PUT",
            "api/token",
            {"X-aws-ec2-metadata-token-ttl-seconds": str(TOKEN_TTL_SECONDS)},
        )

    def get(self, token, key):
        value = self._request(
            "GET",
            f"meta-data/{key}",
            {"X-aws-ec2-metadata-token": token},
        ).strip()
        log.debug("metadata-get", key=key, value=value)
        return value


def fetch_instance_metadata(base_url=IMDS_URL, timeout=2):
    """Returns region, instance id and the root device mapping."""
    client = MetadataClient(base_url, timeout)
    try:
        with client.session:
            token = client.token()
            metadata = InstanceMetadata(
                region=client.get(token, "placement/region"),
                instance_id=client.get(token, "instance-id"),
                root_device=normalize_device_name(
                    client.get(token, "block-device-mapping/root")
                ),
            )
    except requests.RequestException as e:
        log.error("metadata-unavailable", url=base_url, error=str(e))
        raise MetadataUnavailable(
            f"EC2 instance metadata not available at {base_url}: {e}"
        ) from e

    log.info(
        "metadata",
        _replace_msg=(
            "Running on {instance_id} in {region}, root device is "
            "{root_device}"
        ),
        **metadata._asdict(),
    )
    return metadata
