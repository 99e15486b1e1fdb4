import os

import resize_thyself.util.logging
import rich
import structlog
import typer


class ResizeTyperApp(typer.Typer):
    def __init__(self, command_name, **kw):
        # Showing local variables may leak secrets, don't do it in production!
        super().__init__(pretty_exceptions_show_locals=False, **kw)
        self.command_name = command_name

    def __call__(self, *args, **kw):
        try:
            return super().__call__(*args, **kw)
        except Exception as e:
            if not resize_thyself.util.logging.logging_initialized():
                print(
                    "WARNING: could not log an unhandled exception because "
                    "structured logging has not been initialized."
                )
                raise

            try:
                log = structlog.get_logger()
                log.error(
                    "unhandled-exception",
                    exc_info=True,
                    command=self.command_name,
                )
            except Exception:
                print("WARNING: logging an unhandled exception failed.")
                raise e

            # Interactive users get typer's pretty-printed traceback. Under
            # systemd, the log entry above is enough.
            if not os.environ.get("INVOCATION_ID"):
                raise
            raise SystemExit(1)


def ensure_root():
    """Exits with 77 (EX_NOPERM) unless running as root."""
    if os.getuid() != 0:
        rich.print(
            "[bold red]Error:[/bold red] This command needs root "
            "permissions. You might be able to run it with `sudo`, or use "
            "--dryrun to see what would happen."
        )
        raise typer.Exit(77)
