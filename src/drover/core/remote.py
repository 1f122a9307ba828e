"""Delivering a command to a remote execution target.

When a command is not known locally and the active target is remote, the
resolver hands back a :class:`RemoteProxyCommand`. Executing it serializes the
invocation, ships it to the peer and relays output and exit status.
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
import sys
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

import httpx

from .bootstrap import BootLevel
from .exceptions import PermanentError, TransientError
from .logging_utils import log_event
from .retry import retry_transient

if TYPE_CHECKING:
    from .commands.descriptor import CommandInvocation
    from .config import DroverConfig
    from .targets import ExecutionTarget

logger = logging.getLogger("drover.core.remote")

REMOTE_BINARY = "drover"
INVOKE_PATH = "/invoke"

Writer = Callable[[str, bool], None]
RunFn = Callable[[List[str]], int]


class RemoteDispatchError(PermanentError):
    pass


class RemoteUnavailableError(TransientError):
    pass


class Redispatcher(Protocol):
    def redispatch(
        self,
        target: "ExecutionTarget",
        name: str,
        args: Sequence[str],
        options: Mapping[str, Any],
    ) -> int: ...


def default_writer(text: str, err: bool = False) -> None:
    stream = sys.stderr if err else sys.stdout
    stream.write(text)
    stream.flush()


def _default_run(cmd: List[str]) -> int:
    return subprocess.run(cmd, check=False).returncode


def serialize_options(options: Mapping[str, Any]) -> List[str]:
    """Turn an options mapping back into ``--key[=value]`` tokens."""
    tokens: List[str] = []
    for key, value in options.items():
        if value is None:
            continue
        if value is True:
            tokens.append(f"--{key}")
        elif value is False:
            tokens.append(f"--no-{key}")
        else:
            tokens.append(f"--{key}={value}")
    return tokens


class SshRedispatcher:
    def __init__(
        self,
        *,
        ssh_options: Sequence[str] = (),
        run_fn: Optional[RunFn] = None,
        simulate: bool = False,
        writer: Writer = default_writer,
    ) -> None:
        self.ssh_options = list(ssh_options)
        self._run = run_fn or _default_run
        self.simulate = simulate
        self._writer = writer

    def build_command(
        self,
        target: "ExecutionTarget",
        name: str,
        args: Sequence[str],
        options: Mapping[str, Any],
    ) -> List[str]:
        if not target.host:
            raise RemoteDispatchError(f"Target {target.name or '(self)'} has no host")
        remote: List[str] = [REMOTE_BINARY]
        if target.uri:
            remote.append(f"--uri={target.uri}")
        remote.append(name)
        remote.extend(args)
        remote.extend(serialize_options(options))
        remote_text = shlex.join(remote)
        if target.root is not None:
            remote_text = f"cd {shlex.quote(str(target.root))} && {remote_text}"

        cmd = ["ssh"]
        if target.port is not None:
            cmd.extend(["-p", str(target.port)])
        extra = list(self.ssh_options)
        target_opts = target.options.get("ssh-options")
        if isinstance(target_opts, str):
            extra.extend(shlex.split(target_opts))
        for opt in extra:
            cmd.extend(["-o", opt])
        destination = f"{target.user}@{target.host}" if target.user else target.host
        cmd.extend([destination, remote_text])
        return cmd

    def redispatch(
        self,
        target: "ExecutionTarget",
        name: str,
        args: Sequence[str],
        options: Mapping[str, Any],
    ) -> int:
        cmd = self.build_command(target, name, args, options)
        if self.simulate:
            self._writer(f"Calling {shlex.join(cmd)}\n", True)
            return 0
        log_event(
            logger,
            logging.INFO,
            "remote.ssh.redispatch",
            target=target.name,
            host=target.host,
            command=name,
        )
        return int(self._run(cmd))


class HttpRedispatcher:
    """POSTs the invocation and relays an NDJSON stream of output frames.

    Frames look like ``{"stream": "stdout", "data": "..."}``; the last one carries
    ``{"exit_code": n}``. A stream that ends without an exit code counts as a
    failure.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        attempts: int = 3,
        base_wait: float = 0.5,
        client: Optional[httpx.Client] = None,
        simulate: bool = False,
        writer: Writer = default_writer,
    ) -> None:
        self.timeout = timeout
        self.attempts = max(1, int(attempts))
        self.base_wait = base_wait
        self._client = client
        self.simulate = simulate
        self._writer = writer

    @staticmethod
    def payload(
        target: "ExecutionTarget",
        name: str,
        args: Sequence[str],
        options: Mapping[str, Any],
    ) -> Dict[str, Any]:
        return {
            "command": name,
            "args": list(args),
            "options": dict(options),
            "uri": target.uri,
            "root": str(target.root) if target.root is not None else None,
        }

    def redispatch(
        self,
        target: "ExecutionTarget",
        name: str,
        args: Sequence[str],
        options: Mapping[str, Any],
    ) -> int:
        if not target.url:
            raise RemoteDispatchError(f"Target {target.name or '(self)'} has no url")
        url = target.url.rstrip("/") + INVOKE_PATH
        body = self.payload(target, name, args, options)
        if self.simulate:
            self._writer(f"POST {url} {json.dumps(body)}\n", True)
            return 0
        log_event(
            logger,
            logging.INFO,
            "remote.http.redispatch",
            target=target.name,
            url=url,
            command=name,
        )
        retrying = retry_transient(
            max_attempts=self.attempts, base_wait=self.base_wait
        )
        exit_code = retrying(self._deliver)(url, body)
        if exit_code is None:
            log_event(logger, logging.WARNING, "remote.http.no_exit_code", url=url)
            self._writer("Remote stream ended without an exit code.\n", True)
            return 1
        return exit_code

    def _deliver(self, url: str, body: Dict[str, Any]) -> Optional[int]:
        started = False
        try:
            with self._stream(url, body) as response:
                if response.status_code >= 500:
                    raise RemoteUnavailableError(
                        f"Remote returned HTTP {response.status_code}"
                    )
                response.raise_for_status()
                started = True
                return self._relay(response.iter_lines())
        except (
            httpx.ConnectError,
            httpx.ConnectTimeout,
            httpx.RemoteProtocolError,
        ) as exc:
            if started:
                raise RemoteDispatchError(f"Remote stream interrupted: {exc}") from exc
            raise RemoteUnavailableError(f"Remote unavailable: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RemoteDispatchError(f"HTTP error: {exc}") from exc

    def _stream(self, url: str, body: Dict[str, Any]):
        if self._client is not None:
            return self._client.stream("POST", url, json=body, timeout=self.timeout)
        return httpx.stream("POST", url, json=body, timeout=self.timeout)

    def _relay(self, lines: Any) -> Optional[int]:
        exit_code: Optional[int] = None
        for line in lines:
            if not line.strip():
                continue
            try:
                frame = json.loads(line)
            except json.JSONDecodeError:
                log_event(logger, logging.DEBUG, "remote.http.bad_frame", line=line)
                continue
            if not isinstance(frame, dict):
                continue
            if "exit_code" in frame:
                try:
                    exit_code = int(frame["exit_code"])
                except (TypeError, ValueError):
                    exit_code = 1
                continue
            data = frame.get("data")
            if isinstance(data, str):
                self._writer(data, frame.get("stream") == "stderr")
        return exit_code


def _ssh_options(config: Optional["DroverConfig"]) -> List[str]:
    if config is None:
        return []
    raw = config.get("redispatch.ssh-options")
    if isinstance(raw, str):
        return shlex.split(raw)
    if isinstance(raw, list):
        return [str(item) for item in raw]
    return []


def build_redispatcher(
    target: "ExecutionTarget",
    *,
    config: Optional["DroverConfig"] = None,
    simulate: bool = False,
    writer: Writer = default_writer,
) -> Redispatcher:
    if target.transport == "http":
        timeout = 30.0
        attempts = 3
        if config is not None:
            timeout = float(config.get("redispatch.http-timeout", timeout))
            attempts = int(config.get("redispatch.http-attempts", attempts))
        return HttpRedispatcher(
            timeout=timeout, attempts=attempts, simulate=simulate, writer=writer
        )
    return SshRedispatcher(
        ssh_options=_ssh_options(config), simulate=simulate, writer=writer
    )


class RemoteProxyCommand:
    """Stand-in for a command that only exists on the remote target.

    Never registered, never obsolete, and needs no local bootstrap.
    """

    is_remote = True
    obsolete = False
    hidden = True
    handles_remote = True
    bootstrap = BootLevel.NONE
    description = ""
    help = ""
    aliases: Tuple[str, ...] = ()
    usages: Tuple[Tuple[str, str], ...] = ()
    identity = ""

    def __init__(
        self,
        name: str,
        target: "ExecutionTarget",
        redispatcher: Optional[Redispatcher] = None,
    ) -> None:
        self.name = name
        self.target = target
        self.redispatcher = redispatcher

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.name,)

    def execute(self, invocation: "CommandInvocation") -> int:
        redispatcher = self.redispatcher or build_redispatcher(self.target)
        return redispatcher.redispatch(
            self.target, self.name, invocation.args, invocation.options
        )

    def __repr__(self) -> str:
        return f"RemoteProxyCommand(name={self.name!r}, target={self.target.name!r})"


__all__ = [
    "HttpRedispatcher",
    "Redispatcher",
    "RemoteDispatchError",
    "RemoteProxyCommand",
    "RemoteUnavailableError",
    "SshRedispatcher",
    "build_redispatcher",
    "default_writer",
    "serialize_options",
]
