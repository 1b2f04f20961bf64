"""Run toolchain actions as a subprocess and decode their JSON result envelope."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Sequence

from pydantic import ValidationError

from sls_sdk.errors import BridgeExecutionError, EnvelopeDecodeError, ToolchainReportedError
from sls_sdk.schemas import ServerlessOutput

ENTRY_POINT = "sandbox.js"
CREDS_DIR_ENV_VAR = "NIMBELLA_DIR"
USER_AGENT_ENV_VAR = "NIM_USER_AGENT"
DEBUG_ENV_VAR = "DEBUG"

RunFn = Callable[..., subprocess.CompletedProcess]

logger = logging.getLogger(__name__)


def build_user_agent(client_version: str, toolchain_version: str) -> str:
    return f"doctl/{client_version} serverless/{toolchain_version}"


@dataclass(frozen=True)
class CommandSpec:
    argv: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    # Diagnostic stream goes to the parent's stderr instead of being discarded.
    pass_stderr: bool = False

    @property
    def action(self) -> str:
        return self.argv[2] if len(self.argv) > 2 else ""

    def stderr_target(self):
        return None if self.pass_stderr else subprocess.DEVNULL


class SubprocessBridge:
    def __init__(
        self,
        *,
        node: str | Path,
        entry_point: str | Path,
        creds_dir: str | Path,
        user_agent: str,
        run: RunFn = subprocess.run,
    ) -> None:
        self.node = str(node)
        self.entry_point = str(entry_point)
        self.creds_dir = str(creds_dir)
        self.user_agent = user_agent
        self._run = run

    def build_command(
        self,
        action: str,
        args: Sequence[str] = (),
        *,
        environ: Mapping[str, str] | None = None,
    ) -> CommandSpec:
        base_env = dict(os.environ if environ is None else environ)
        env = {
            **base_env,
            CREDS_DIR_ENV_VAR: self.creds_dir,
            USER_AGENT_ENV_VAR: self.user_agent,
        }
        return CommandSpec(
            argv=(self.node, self.entry_point, action, *args),
            env=env,
            pass_stderr=bool(base_env.get(DEBUG_ENV_VAR)),
        )

    def execute(self, cmd: CommandSpec) -> ServerlessOutput:
        """Run ``cmd`` to completion and decode stdout as a result envelope.

        A non-zero exit status is tolerated when stdout still decodes; the
        toolchain reports failures inline. An envelope with a non-empty
        ``error`` raises :class:`ToolchainReportedError` whose ``output``
        keeps the partial results.
        """
        logger.debug("executing toolchain action %s", cmd.action)
        try:
            proc = self._run(
                list(cmd.argv),
                env=dict(cmd.env),
                stdout=subprocess.PIPE,
                stderr=cmd.stderr_target(),
                check=False,
            )
        except OSError as exc:
            raise BridgeExecutionError(f"failed to run {cmd.action}: {exc}") from exc

        if proc.returncode:
            logger.debug("toolchain action %s exited with %s", cmd.action, proc.returncode)
        try:
            payload = json.loads(proc.stdout or b"")
            result = ServerlessOutput.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            raise EnvelopeDecodeError(
                f"unreadable output from {cmd.action}: {exc}",
                returncode=proc.returncode,
            ) from exc

        if result.error:
            raise ToolchainReportedError(result.error, output=result)
        return result

    def stream(self, cmd: CommandSpec) -> None:
        """Run ``cmd`` with its output passed straight through to the terminal."""
        logger.debug("streaming toolchain action %s", cmd.action)
        try:
            proc = self._run(
                list(cmd.argv),
                env=dict(cmd.env),
                stderr=cmd.stderr_target(),
                check=False,
            )
        except OSError as exc:
            raise BridgeExecutionError(f"failed to run {cmd.action}: {exc}") from exc
        if proc.returncode:
            raise BridgeExecutionError(
                f"{cmd.action} exited with status {proc.returncode}",
                returncode=proc.returncode,
            )


__all__ = ["CommandSpec", "SubprocessBridge", "build_user_agent"]
