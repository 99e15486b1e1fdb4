import textwrap

import boto3
import responses
import stamina
import structlog
from botocore.stub import Stubber
from pytest import fixture
from resize_thyself.config import Config


@fixture(autouse=True)
def no_retry_backoff():
    stamina.set_active(False)
    yield
    stamina.set_active(True)


@fixture
def logger():
    return structlog.get_logger()


@fixture
def config(tmp_path):
    mounts = tmp_path / "mounts"
    mounts.write_text(
        textwrap.dedent(
            """\
            sysfs /sys sysfs rw,nosuid,nodev,noexec,relatime 0 0
            proc /proc proc rw,nosuid,nodev,noexec,relatime 0 0
            /dev/xvda1 / ext4 rw,relatime,discard 0 0
            tmpfs /run tmpfs rw,nosuid,nodev,mode=755 0 0
            """
        )
    )
    return Config(poll_interval=1, mount_table=str(mounts))


@fixture
def mocked_responses():
    with responses.RequestsMock() as rsps:
        yield rsps


@fixture
def ec2_client():
    return boto3.client(
        "ec2",
        region_name="eu-central-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@fixture
def ec2_stub(ec2_client):
    with Stubber(ec2_client) as stubber:
        yield stubber
        stubber.assert_no_pending_responses()