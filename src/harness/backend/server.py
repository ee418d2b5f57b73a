"""OpenCode server bootstrap and lifecycle.

Starts ``opencode serve`` as an async subprocess (or attaches to an
already running server), waits for it to report its listening URL,
confirms connectivity with a bounded ping loop and returns a
BackendHandle. Server output is drained to the debug log for the life
of the process so the pipes never fill up.
"""

import asyncio
import logging
import re
from typing import Callable, List, Optional

from src.harness.backend.client import BackendError, OpenCodeClient
from src.harness.logging_setup import sanitize_message

logger = logging.getLogger(__name__)


LISTENING_PATTERN = re.compile(r"listening on (https?://\S+)")


class BootstrapError(BackendError):
    """Raised when the OpenCode server cannot be started or reached."""


class BackendHandle:
    """A connected OpenCode server.

    Attributes:
        client: API client bound to the server URL.
        url: Server URL.
        process: The server subprocess, None when attached to an external server.
    """

    def __init__(
        self,
        client: OpenCodeClient,
        url: str,
        process: Optional[asyncio.subprocess.Process] = None,
        drain_tasks: Optional[List["asyncio.Task[None]"]] = None,
    ):
        self.client = client
        self.url = url
        self.process = process
        self._drain_tasks = drain_tasks or []
        self._shut_down = False

    @property
    def owns_process(self) -> bool:
        return self.process is not None

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def shutdown(self) -> None:
        """Stop the server process. Calls after the first have no effect."""
        if self._shut_down:
            return
        self._shut_down = True

        for task in self._drain_tasks:
            task.cancel()

        if self.process is not None and self.process.returncode is None:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass

        logger.debug("OpenCode server shut down", extra={"url": self.url})

    async def aclose(self, wait_seconds: float = 5.0) -> None:
        """Shut down, close the client and reap the process."""
        self.shutdown()
        await self.release(wait_seconds)

    async def release(self, wait_seconds: float = 5.0) -> None:
        """Close the client and wait for a shut down process to exit."""
        await self.client.close()

        if self.process is None:
            return
        try:
            await asyncio.wait_for(self.process.wait(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            logger.warning("OpenCode server did not exit, killing it", extra={"url": self.url})
            try:
                self.process.kill()
            except ProcessLookupError:
                pass


async def _read_lines(stream: Optional[asyncio.StreamReader]):
    if stream is None:
        return
    while True:
        raw_line = await stream.readline()
        if not raw_line:
            break
        yield raw_line.decode("utf-8", errors="replace").rstrip("\n")


async def _drain(stream: Optional[asyncio.StreamReader], stream_name: str) -> None:
    async for line in _read_lines(stream):
        logger.debug("opencode %s: %s", stream_name, line)


async def _start_process(
    opencode_path: str,
    hostname: str,
    port: int,
    cwd: Optional[str],
) -> asyncio.subprocess.Process:
    logger.info(
        "Starting OpenCode server",
        extra={"opencode_path": opencode_path, "hostname": hostname, "port": port},
    )
    return await asyncio.create_subprocess_exec(
        opencode_path,
        "serve",
        f"--hostname={hostname}",
        f"--port={port}",
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


async def _wait_for_listening(
    process: asyncio.subprocess.Process,
    timeout_seconds: float,
    cancel_event: asyncio.Event,
) -> str:
    """Read server stdout until it reports the listening URL.

    Raises:
        RuntimeError: If the server exits, the timeout elapses or the
            cancellation event is set first.
    """

    async def read_url() -> str:
        async for line in _read_lines(process.stdout):
            logger.debug("opencode stdout: %s", line)
            match = LISTENING_PATTERN.search(line)
            if match:
                return match.group(1).rstrip("/")
        await process.wait()
        raise RuntimeError(
            f"server exited before listening (exit code {process.returncode})"
        )

    reader = asyncio.ensure_future(read_url())
    canceller = asyncio.ensure_future(cancel_event.wait())
    done, pending = await asyncio.wait(
        {reader, canceller},
        timeout=timeout_seconds,
        return_when=asyncio.FIRST_COMPLETED,
    )
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    if reader in done:
        return reader.result()
    if canceller in done:
        raise RuntimeError("startup aborted")
    raise RuntimeError(f"server did not start listening within {timeout_seconds:g}s")


async def _confirm_connectivity(
    client: OpenCodeClient,
    attempts: int,
    delay_seconds: float,
    cancel_event: asyncio.Event,
) -> None:
    """Ping the server with a fixed number of attempts and a fixed delay."""
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        if cancel_event.is_set():
            raise RuntimeError("startup aborted")
        try:
            await client.log("harness connected", level="debug")
            logger.debug("OpenCode server reachable", extra={"attempt": attempt})
            return
        except BackendError as exc:
            last_error = exc
            logger.debug(
                "OpenCode ping failed",
                extra={"attempt": attempt, "max_attempts": attempts, "error": str(exc)},
            )
        if attempt < attempts:
            await asyncio.sleep(delay_seconds)

    raise RuntimeError(f"server not reachable after {attempts} attempts: {last_error}")


async def bootstrap_backend(
    settings,
    cancel_event: Optional[asyncio.Event] = None,
    client_factory: Callable[[str], OpenCodeClient] = OpenCodeClient,
) -> BackendHandle:
    """Start or attach to an OpenCode server and return a connected handle.

    Args:
        settings: HarnessSettings (server, ping and workspace fields are used).
        cancel_event: Set to abort startup early.
        client_factory: Builds the API client for the server URL.

    Returns:
        A BackendHandle. It owns the server process when one was spawned.

    Raises:
        BootstrapError: With message "Server bootstrap failed: <cause>".
    """
    cancel_event = cancel_event or asyncio.Event()
    process: Optional[asyncio.subprocess.Process] = None
    client: Optional[OpenCodeClient] = None
    handle: Optional[BackendHandle] = None
    drain_tasks: List["asyncio.Task[None]"] = []

    try:
        if settings.server_url:
            url = settings.server_url
            logger.debug("Attaching to external OpenCode server", extra={"url": url})
        else:
            process = await _start_process(
                settings.opencode_path,
                settings.server_hostname,
                settings.server_port,
                str(settings.resolved_workspace),
            )
            # Drain stderr during startup; a full pipe blocks the server
            drain_tasks.append(asyncio.ensure_future(_drain(process.stderr, "stderr")))
            url = await _wait_for_listening(
                process, settings.server_startup_timeout_seconds, cancel_event
            )
            drain_tasks.append(asyncio.ensure_future(_drain(process.stdout, "stdout")))

        client = client_factory(url)
        handle = BackendHandle(client, url, process, drain_tasks)
        await _confirm_connectivity(
            client, settings.ping_attempts, settings.ping_delay_seconds, cancel_event
        )
        logger.info("OpenCode server bootstrapped", extra={"url": url})
        return handle
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        logger.warning(
            "Failed to bootstrap OpenCode server",
            extra={"error": sanitize_message(message)},
        )
        await _discard(handle, client, process, drain_tasks)
        raise BootstrapError(f"Server bootstrap failed: {message}") from exc
    except BaseException:
        await _discard(handle, client, process, drain_tasks)
        raise


async def _discard(
    handle: Optional[BackendHandle],
    client: Optional[OpenCodeClient],
    process: Optional[asyncio.subprocess.Process],
    drain_tasks: List["asyncio.Task[None]"],
) -> None:
    for task in drain_tasks:
        task.cancel()
    await asyncio.gather(*drain_tasks, return_exceptions=True)

    if handle is not None:
        handle.shutdown()
        await handle.client.close()
        return
    if client is not None:
        await client.close()
    if process is not None and process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
