import subprocess
import traceback
import unittest.mock

import pytest
import resize_thyself
import resize_thyself.cli
import typer.testing
from resize_thyself.disk import resolve_mount
from resize_thyself.metadata import InstanceMetadata
from resize_thyself.tests.fakeec2 import (
    ATTACHMENT_FILTER,
    INSTANCE_ID,
    VOLUME_ID,
    volume,
)

DF_TEMPLATE = """\
Filesystem     1K-blocks  Used Available Use% Mounted on
/dev/xvda1           100  {used}  {avail}  {used}% /
"""


@pytest.fixture
def fake_system(config, ec2_client):
    """Patches everything outside of this process.

    Returns the mocked `subprocess.run` so tests can set the disk usage
    and inspect commands.
    """
    commands = []
    usage = {"used": 95}

    def fake_run(cmd, **kw):
        commands.append(cmd)
        stdout = ""
        if cmd[0] == "df":
            stdout = DF_TEMPLATE.format(
                used=usage["used"], avail=100 - usage["used"]
            )
        return subprocess.CompletedProcess(cmd, 0, stdout, "")

    with unittest.mock.patch(
        "resize_thyself.resize.fetch_instance_metadata",
        return_value=InstanceMetadata(
            "eu-central-1", INSTANCE_ID, "/dev/xvda"
        ),
    ), unittest.mock.patch(
        "resize_thyself.resize.ec2.connect", return_value=ec2_client
    ), unittest.mock.patch(
        "resize_thyself.disk.device_exists",
        side_effect=lambda p: p == "/dev/xvda",
    ), unittest.mock.patch(
        "resize_thyself.resize.resolve_mount",
        side_effect=lambda dev, _: resolve_mount(dev, config.mount_table),
    ), unittest.mock.patch(
        "resize_thyself.util.runners.subprocess.run", side_effect=fake_run
    ):
        fake_run.commands = commands
        fake_run.usage = usage
        yield fake_run


@pytest.fixture
def invoke_app(tmp_path):
    runner = typer.testing.CliRunner()
    main_args = ("--config", str(tmp_path / "resize-thyself.conf"))

    def _invoke_app(*args, expected_exit_code=0):
        result = runner.invoke(resize_thyself.cli.app, main_args + args)
        if result.exc_info and result.exit_code != expected_exit_code:
            traceback.print_tb(result.exc_info[2])
        assert result.exit_code == expected_exit_code, (
            f"unexpected exit code, output: {result.output}"
        )
        return result

    return _invoke_app


def test_dryrun_only_checks_permissions(
    invoke_app, fake_system, ec2_stub, log
):
    ec2_stub.add_response(
        "describe_volumes",
        {"Volumes": [volume(size=100)]},
        {"Filters": ATTACHMENT_FILTER},
    )
    ec2_stub.add_client_error(
        "modify_volume",
        service_error_code="DryRunOperation",
        http_status_code=412,
        expected_params={"VolumeId": VOLUME_ID, "Size": 110, "DryRun": True},
    )
    invoke_app("--dryrun")

    assert [c[0] for c in fake_system.commands] == ["df", "growpart"]
    assert fake_system.commands[1] == (
        "growpart",
        "--dry-run",
        "/dev/xvda",
        "1",
    )
    assert log.has("run-command-dryrun", cmdline="resize2fs /dev/xvda1")
    assert log.has("resize-thyself-finished", resized=["/dev/xvda"])


@unittest.mock.patch("resize_thyself.util.typer_utils.os.getuid")
def test_resize_grows_volume_and_filesystem(
    getuid, invoke_app, fake_system, ec2_stub
):
    getuid.return_value = 0
    ec2_stub.add_response(
        "describe_volumes",
        {"Volumes": [volume(size=100)]},
        {"Filters": ATTACHMENT_FILTER},
    )
    ec2_stub.add_response(
        "modify_volume",
        {
            "VolumeModification": {
                "VolumeId": VOLUME_ID,
                "ModificationState": "completed",
                "TargetSize": 120,
            }
        },
        {"VolumeId": VOLUME_ID, "Size": 120, "DryRun": False},
    )
    invoke_app("--grow-percent", "20")

    assert fake_system.commands[1:] == [
        ("growpart", "/dev/xvda", "1"),
        ("resize2fs", "/dev/xvda1"),
    ]


@unittest.mock.patch("resize_thyself.util.typer_utils.os.getuid")
def test_resize_on_nvme_instance(
    getuid, config, invoke_app, fake_system, ec2_stub, log
):
    getuid.return_value = 0
    with open(config.mount_table, "w") as f:
        f.write("/dev/nvme0n1p1 / ext4 rw,relatime 0 0\n")
    ec2_stub.add_response(
        "describe_volumes",
        {"Volumes": [volume(size=100)]},
        {"Filters": ATTACHMENT_FILTER},
    )
    ec2_stub.add_response(
        "modify_volume",
        {
            "VolumeModification": {
                "VolumeId": VOLUME_ID,
                "ModificationState": "completed",
                "TargetSize": 110,
            }
        },
        {"VolumeId": VOLUME_ID, "Size": 110, "DryRun": False},
    )
    with unittest.mock.patch(
        "resize_thyself.disk.device_exists",
        side_effect=lambda p: p == "/dev/nvme0n1p1",
    ):
        invoke_app()

    assert fake_system.commands[1:] == [
        ("growpart", "/dev/nvme0n1", "1"),
        ("resize2fs", "/dev/nvme0n1p1"),
    ]
    assert log.has("resize-thyself-finished", resized=["/dev/xvda"])


def test_nothing_to_do_below_threshold(
    invoke_app, fake_system, ec2_stub, log
):
    fake_system.usage["used"] = 50
    invoke_app("--dryrun")
    assert [c[0] for c in fake_system.commands] == ["df"]
    assert log.has("resize-device-not-needed", mount_point="/")
    assert log.has("resize-thyself-finished", resized=[])


def test_threshold_from_config_file(
    tmp_path, invoke_app, fake_system, ec2_stub, log
):
    (tmp_path / "resize-thyself.conf").write_text(
        "[resize-thyself]\nthreshold = 96\n"
    )
    invoke_app("--dryrun")
    assert log.has("resize-device-not-needed", threshold=0.96)


def test_ambiguous_mount_fails(
    config, invoke_app, fake_system, ec2_stub, log
):
    with open(config.mount_table, "a") as f:
        f.write("/dev/xvda2 /srv ext4 rw 0 0\n")
    invoke_app("--dryrun", expected_exit_code=1)
    assert log.has("resize-thyself-failed", error_class="AmbiguousMount")
    assert fake_system.commands == []


def test_invalid_threshold(invoke_app, log):
    invoke_app("--threshold", "150", expected_exit_code=2)
    assert log.has("resize-thyself-failed", error_class="ConfigurationError")


@unittest.mock.patch("resize_thyself.resize.run")
@unittest.mock.patch("resize_thyself.util.typer_utils.os.getuid")
def test_needs_root_without_dryrun(getuid, run, invoke_app, log):
    getuid.return_value = 1000
    result = invoke_app(expected_exit_code=77)
    assert "root" in result.output
    run.assert_not_called()


def test_version(invoke_app):
    result = invoke_app("--version")
    assert result.output.strip() == (
        f"resize-thyself {resize_thyself.__version__}"
    )
