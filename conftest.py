import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--with-ec2",
        action="store_true",
        default=False,
        dest="with_ec2",
        help=(
            "Run tests that need to run on an EC2 instance with access to "
            "the instance metadata service."
        ),
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "needs_ec2: test needs to run on an EC2 instance"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("with_ec2"):
        return

    skip_ec2 = pytest.mark.skip(reason="needs --with-ec2 option to run")
    for item in items:
        if "needs_ec2" in item.keywords:
            item.add_marker(skip_ec2)
