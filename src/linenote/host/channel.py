"""Message Channel Adapter: the framed request/response loop.

One host process serves exactly one caller over a pair of byte streams
(normally stdin/stdout).  Requests are handled strictly one at a time:
a frame is read, answered with exactly one frame, and only then is the
next frame read.  The loop ends only when the caller closes its end;
on the way out the session's editing markers are released.

Invoked by browsers as::

    linenote-host chrome-extension://<id>/

or directly as ``linenote serve``.
"""
from __future__ import annotations

import logging
import signal
import sys
from typing import BinaryIO

from linenote.config import ConfigError, HostConfig, load_config
from linenote.errors import ValidationError
from linenote.host.dispatcher import Dispatcher, Response, failure_response
from linenote.logs import configure_logging
from linenote.protocol.framing import (
    EndOfStream,
    FrameTooLarge,
    decode_message,
    encode_message,
    read_frame,
    write_frame,
)

logger = logging.getLogger(__name__)


class ChannelAdapter:
    """Serve framed requests from ``reader`` and answer on ``writer``.

    Parameters
    ----------
    dispatcher:
        Turns decoded requests into responses.
    reader:
        Binary stream the caller writes requests to.
    writer:
        Binary stream the caller reads responses from.
    config:
        Supplies the inbound and outbound frame limits.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        reader: BinaryIO,
        writer: BinaryIO,
        config: HostConfig | None = None,
    ) -> None:
        config = config or HostConfig()
        self._dispatcher = dispatcher
        self._reader = reader
        self._writer = writer
        self._max_inbound = config.max_inbound_bytes
        self._max_outbound = config.max_outbound_bytes
        self.handled = 0

    def _send(self, response: Response) -> None:
        payload = encode_message(response)
        if len(payload) > self._max_outbound:
            logger.warning("Response of %d bytes exceeds frame limit", len(payload))
            payload = encode_message(
                failure_response(FrameTooLarge(len(payload), self._max_outbound, "Response"))
            )
        write_frame(self._writer, payload)

    def serve_one(self) -> bool:
        """Handle one request; return False once the stream has ended."""
        try:
            body = read_frame(self._reader, self._max_inbound)
        except EndOfStream as exc:
            if not exc.clean:
                logger.warning("Caller disconnected: %s", exc)
            return False
        except FrameTooLarge as exc:
            self._send(failure_response(exc))
            return True

        try:
            message = decode_message(body)
        except ValidationError as exc:
            self._send(failure_response(exc))
            return True

        self._send(self._dispatcher.handle(message))
        self.handled += 1
        return True

    def serve(self) -> int:
        """Serve until end of stream; return the number of requests handled."""
        try:
            while self.serve_one():
                pass
        except BrokenPipeError:
            logger.info("Caller closed the response stream")
        finally:
            self._dispatcher.close()
        logger.debug("Session ended after %d request(s)", self.handled)
        return self.handled


def _terminate(signum: int, frame: object) -> None:
    # Unwind through ChannelAdapter.serve so the markers are released.
    raise SystemExit(0)


def install_signal_handlers() -> None:
    signal.signal(signal.SIGTERM, _terminate)


def run(config: HostConfig, reader: BinaryIO | None = None, writer: BinaryIO | None = None) -> int:
    """Serve one session on ``reader``/``writer`` (default: stdin/stdout)."""
    reader = reader or sys.stdin.buffer
    writer = writer or sys.stdout.buffer
    if sys.platform == "win32":  # pragma: no cover
        import msvcrt
        import os

        msvcrt.setmode(reader.fileno(), os.O_BINARY)
        msvcrt.setmode(writer.fileno(), os.O_BINARY)

    channel = ChannelAdapter(Dispatcher(config), reader, writer, config)
    return channel.serve()


def main(argv: list[str] | None = None) -> int:
    """Console entry point for ``linenote-host``.

    Positional arguments (browsers pass the caller's origin) are
    ignored; all settings come from the config file and environment.
    """
    try:
        config = load_config()
    except ConfigError as exc:
        configure_logging()
        logger.error("%s; falling back to defaults", exc)
        config = HostConfig()
    configure_logging(config.log_level, config.log_file)

    install_signal_handlers()
    logger.info("linenote host started (argv=%r)", argv if argv is not None else sys.argv[1:])
    run(config)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
