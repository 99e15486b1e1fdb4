# adapted from fc.util.runners
import subprocess
from subprocess import PIPE

import structlog
from resize_thyself.errors import SubprocessError

log = structlog.get_logger()


class Runner(object):
    """Create simplified calls for external tools.

    `run.growpart("/dev/xvda", "1")` runs `growpart /dev/xvda 1` and returns
    its stdout as text. A non-zero exit status raises `SubprocessError`.

    In dry-run mode, commands are only logged and return an empty string.
    Commands which don't change anything can pass `readonly=True` to be
    executed even in dry-run mode.

    """

    def __init__(
        self,
        dryrun=False,
        default_options=dict(stdout=PIPE, stderr=PIPE, text=True),
    ):
        self.dryrun = dryrun
        self.default_options = default_options

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        def callable(*args, readonly=False, **kw):
            cmd = (name,) + args
            cmdline = " ".join(cmd)

            if self.dryrun and not readonly:
                log.info(
                    "run-command-dryrun",
                    _replace_msg="Would run: '{cmdline}'",
                    cmdline=cmdline,
                )
                return ""

            options = self.default_options.copy()
            options.update(kw)

            log.debug("run-command", cmdline=cmdline)
            try:
                proc = subprocess.run(cmd, **options)
            except OSError as e:
                log.error("run-command-failed", cmdline=cmdline, error=str(e))
                raise SubprocessError(cmd, None, stderr=str(e)) from e

            if proc.returncode != 0:
                log.debug(
                    "run-command-nonzero-exit",
                    cmdline=cmdline,
                    returncode=proc.returncode,
                    stdout=proc.stdout,
                    stderr=proc.stderr,
                )
                raise SubprocessError(
                    cmd, proc.returncode, proc.stdout, proc.stderr
                )

            return proc.stdout

        return callable
