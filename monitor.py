import argparse
import curses
import locale
import logging
import os
import sys

from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("smartmeter-monitor.env")

from aggregator import RollingAggregator
from channel import ChannelClosed, ChannelTimeout, ReadingChannel, start_acquisition
from sinks.chart import build_panels, draw, init_styles
from sinks.csv_log import CsvLog
from sources.p1_serial import P1SerialSource
from sources.synthetic import SyntheticSource

logger = logging.getLogger(__name__)

METER_LOG_CSV = os.getenv("METER_LOG_CSV", "log.csv")

# Key poll per loop iteration (seconds)
KEY_POLL_TIMEOUT = 0.1
# Liveness timeout: no reading within this time stops the monitor (seconds)
RECEIVE_TIMEOUT = 3.0


class PipelineError(Exception):
    """The reading pipeline stopped delivering data."""


class PipelineStalled(PipelineError):
    """No reading arrived within RECEIVE_TIMEOUT."""


class PipelineClosed(PipelineError):
    """The reading source exited."""


def setup_logging():
    # curses owns the terminal, so diagnostics go to a file
    logging.basicConfig(
        filename=os.getenv("MONITOR_LOG_FILE", "monitor.log"),
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )


def get_source(port_path: str | None):
    """Select the meter source: a serial port if given, synthetic data otherwise"""
    if port_path:
        logger.info(f"Using source: P1 Serial ({port_path})")
        return P1SerialSource(device=port_path)
    logger.info("Using source: Synthetic")
    return SyntheticSource()


def run_app(screen, aggregator: RollingAggregator, channel: ReadingChannel, styles=None) -> None:
    """
    Display loop.

    Each iteration redraws the chart, polls for the quit key and then
    waits for the next reading. Returns when 'q' is pressed; raises
    PipelineError when the source stalls or exits.
    """
    screen.timeout(int(KEY_POLL_TIMEOUT * 1000))

    while True:
        draw(screen, build_panels(aggregator.window), styles)

        key = screen.getch()
        if key == ord('q'):
            logger.info("Display: Quit requested")
            return

        try:
            reading = channel.receive(RECEIVE_TIMEOUT)
        except ChannelTimeout as e:
            raise PipelineStalled(f"No data received for {RECEIVE_TIMEOUT:.0f}s: Quit!") from e
        except ChannelClosed as e:
            raise PipelineClosed(f"RX channel closed ({e}): Quit!") from e

        aggregator.on_reading(reading)


def _run_terminal(screen, aggregator: RollingAggregator, channel: ReadingChannel) -> None:
    # curses.wrapper already set cbreak/keypad and restores everything on exit
    curses.raw()
    curses.curs_set(0)
    run_app(screen, aggregator, channel, init_styles())


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Smart meter power monitor")
    parser.add_argument(
        "port_path",
        nargs="?",
        default=None,
        help="Serial port of the P1 meter (default: synthetic readings)"
    )
    args = parser.parse_args(argv)

    setup_logging()
    locale.setlocale(locale.LC_ALL, "")

    channel = ReadingChannel()
    try:
        with CsvLog(METER_LOG_CSV) as log, get_source(args.port_path) as source:
            aggregator = RollingAggregator(log)
            start_acquisition(source, channel)
            try:
                curses.wrapper(_run_terminal, aggregator, channel)
            finally:
                # Detach before the source closes: the acquisition thread
                # stops on its next send
                channel.detach()
    except (PipelineError, OSError, curses.error) as e:
        logger.error(f"Monitor: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info("Monitor: Stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
