"""Errors which abort a resize-thyself run.

Every error is fatal for the current run. The CLI catches `ResizeError`,
logs it and exits with the error's `exit_code`.
"""


class ResizeError(Exception):
    exit_code = 1


class ConfigurationError(ResizeError):
    exit_code = 2


class DeviceNotFound(ResizeError):
    def __init__(self, cloud_device: str, candidates: list[str]):
        self.cloud_device = cloud_device
        self.candidates = candidates
        super().__init__(
            f"none of the device names {', '.join(candidates)} for "
            f"{cloud_device} exist on this system"
        )


class AmbiguousMount(ResizeError):
    def __init__(self, device: str, lines: list[str]):
        self.device = device
        self.lines = lines
        super().__init__(
            f"expected exactly one mount for {device}, found {len(lines)}"
        )


class InvalidPartition(ResizeError):
    pass


class UsageParseError(ResizeError):
    pass


class NoAttachedVolume(ResizeError):
    def __init__(self, instance_id: str, device: str, volume_ids: list[str]):
        self.instance_id = instance_id
        self.device = device
        self.volume_ids = volume_ids
        super().__init__(
            f"no volume attached to {instance_id} as {device} "
            f"(attached volumes: {', '.join(volume_ids) or 'none'})"
        )


class CloudApiError(ResizeError):
    def __init__(self, msg, code=None):
        self.code = code
        super().__init__(msg)


class MetadataUnavailable(CloudApiError):
    pass


class ResizeTimeout(ResizeError):
    def __init__(self, volume_id: str, attempts: int, state: str):
        self.volume_id = volume_id
        self.attempts = attempts
        self.state = state
        super().__init__(
            f"modification of {volume_id} still {state} after "
            f"{attempts} status queries"
        )


class SubprocessError(ResizeError):
    def __init__(self, cmd, returncode, stdout="", stderr=""):
        self.cmd = cmd
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        msg = f"'{' '.join(cmd)}' exited with return code {returncode}"
        if stderr:
            msg += ": " + stderr.strip()
        super().__init__(msg)
