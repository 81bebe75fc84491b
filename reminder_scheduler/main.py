import asyncio
import signal
import sys

from reminder_scheduler.config.settings import Settings, settings
from reminder_scheduler.tasks.reminder_scheduler import create_reminder_scheduler
from reminder_scheduler.utils.logging import get_logger

# Initialize the logger
logger = get_logger()


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log exceptions nobody awaited instead of letting them vanish."""
    exception = context.get("exception")
    if exception is not None:
        logger.opt(exception=exception).error(
            "Unhandled exception in event loop", context=context.get("message")
        )
    else:
        logger.error("Unhandled event loop error", context=context.get("message"))


def setup_signal_handlers(loop: asyncio.AbstractEventLoop, stop_event: asyncio.Event):
    """SIGINT and SIGTERM request a shutdown"""

    def request_stop(signum: int) -> None:
        logger.info("Received signal, initiating shutdown...", signal=signum)
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, request_stop, signum)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler
            signal.signal(
                signum,
                lambda received, _frame: loop.call_soon_threadsafe(
                    request_stop, received
                ),
            )


async def serve(app_settings: Settings = settings) -> int:
    """Run the scheduler until a termination signal arrives."""
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_handle_loop_exception)

    stop_event = asyncio.Event()
    setup_signal_handlers(loop, stop_event)

    logger.info(
        "Reminder scheduler is starting up...",
        environment=app_settings.ENVIRONMENT,
        version=app_settings.VERSION,
    )
    retry_seconds = app_settings.BOOTSTRAP_RETRY_MINUTES * 60
    scheduler = create_reminder_scheduler(app_settings)

    while not stop_event.is_set():
        runner = asyncio.create_task(scheduler.run_forever(), name="reminder_scheduler")
        stopper = asyncio.create_task(stop_event.wait())
        done, _ = await asyncio.wait(
            {runner, stopper}, return_when=asyncio.FIRST_COMPLETED
        )

        if stopper in done:
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
            break

        stopper.cancel()
        error = None if runner.cancelled() else runner.exception()
        logger.error(
            "Reminder scheduler exited unexpectedly, restarting",
            error=str(error),
            retry_in_seconds=retry_seconds,
        )
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=retry_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("Reminder scheduler is shutting down...")
    return 0


def main() -> int:
    try:
        return asyncio.run(serve())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
