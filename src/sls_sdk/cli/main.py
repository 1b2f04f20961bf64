"""Command-line interface for sls."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from typing import Sequence

from sls_sdk.cli.config import CLIConfig, ConfigError, load_cli_config
from sls_sdk.client import ControlPlaneClient
from sls_sdk.errors import (
    BridgeExecutionError,
    ControlPlaneRequestError,
    CredentialsError,
    InstallActivationError,
    InstallError,
    SchemaValidationError,
    ServerlessStatusError,
    ToolchainReportedError,
    TransportError,
)
from sls_sdk.hostinfo import supported_runtime_kinds
from sls_sdk.schemas import ServerlessOutput
from sls_sdk.service import ServerlessService, client_version
from sls_sdk.status import ServerlessStatus, get_min_serverless_version

EXIT_SUCCESS = 0
EXIT_VALIDATION_ERROR = 1
EXIT_NETWORK_ERROR = 2
EXIT_STATUS_ERROR = 3
EXIT_TOOLCHAIN_ERROR = 4

_SENSITIVE_FIELDS = (
    "api_key",
    "access_token",
    "authorization",
    "secret",
    "token",
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sls")
    parser.add_argument(
        "--version",
        action="version",
        version=f"sls {client_version()}",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to CLI config TOML (default: ~/.sls_agent/config.toml)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log debug output to stderr")

    sub = parser.add_subparsers(dest="command", required=True)

    version = sub.add_parser("version", help="Show CLI and toolchain versions")
    version.add_argument("--json", action="store_true", help="Print version details as JSON")

    status = sub.add_parser("status", help="Check whether the toolchain is installed and connected")
    status.add_argument("--json", action="store_true")

    sub.add_parser("install", help="Install the serverless toolchain")
    sub.add_parser("upgrade", help="Upgrade the serverless toolchain, keeping credentials")

    connect = sub.add_parser("connect", help="Connect to a functions namespace")
    connect.add_argument(
        "namespace",
        nargs="?",
        default=None,
        help="Namespace name (default: the namespace assigned to the access token)",
    )
    connect.add_argument("--json", action="store_true")

    namespaces = sub.add_parser("namespaces", help="Manage functions namespaces")
    ns_sub = namespaces.add_subparsers(dest="namespaces_command", required=True)
    ns_list = ns_sub.add_parser("list", help="List namespaces visible to the access token")
    ns_list.add_argument("--json", action="store_true")
    ns_create = ns_sub.add_parser("create", help="Create a namespace")
    ns_create.add_argument("--label", required=True)
    ns_create.add_argument("--region", required=True)
    ns_create.add_argument(
        "--no-connect",
        action="store_true",
        help="Do not make the new namespace the connected one",
    )
    ns_create.add_argument("--json", action="store_true")
    ns_delete = ns_sub.add_parser("delete", help="Delete a namespace")
    ns_delete.add_argument("name")

    exec_cmd = sub.add_parser("exec", help="Run a toolchain action")
    exec_cmd.add_argument("--json", action="store_true", help="Print the raw result envelope")
    exec_cmd.add_argument(
        "--stream",
        action="store_true",
        help="Pass toolchain output straight through instead of decoding it",
    )
    exec_cmd.add_argument("action", help="Toolchain action, e.g. action/list")
    exec_cmd.add_argument("action_args", nargs=argparse.REMAINDER)

    host_info = sub.add_parser("host-info", help="Show runtimes supported by an API host")
    host_info.add_argument(
        "--api-host",
        default=None,
        help="API host to query (default: the connected namespace's host)",
    )
    host_info.add_argument("--json", action="store_true")

    functions = sub.add_parser("functions", help="Inspect deployed functions")
    fn_sub = functions.add_subparsers(dest="functions_command", required=True)
    fn_get = fn_sub.add_parser("get", help="Show a function's metadata")
    fn_get.add_argument("name")
    fn_get.add_argument("--code", action="store_true", help="Include the function's code")
    fn_get.add_argument("--json", action="store_true")

    return parser


def _configure_logging(verbose: bool, stderr) -> None:
    if not (verbose or os.getenv("DEBUG")):
        return
    logging.basicConfig(
        level=logging.DEBUG,
        stream=stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _emit_beta_warning(config: CLIConfig, command: str, stderr) -> None:
    if command == "version":
        return
    if not config.beta_mode:
        return
    print(
        "[beta] sls is in beta mode; commands and outputs may change.",
        file=stderr,
    )


def _sanitize_error_text(value: str) -> str:
    redacted = re.sub(r"(?i)(bearer\s+)(\S+)", r"\1[REDACTED]", value)
    for field in _SENSITIVE_FIELDS:
        redacted = re.sub(
            rf"(?i)({field}\s*[=:]\s*)([^,\s]+)",
            r"\1[REDACTED]",
            redacted,
        )
    return redacted


def _print_error(stderr, prefix: str, message: str, *, code: int) -> int:
    print(f"{prefix}: {_sanitize_error_text(message)}", file=stderr)
    return code


def _print_transport_error(stderr, exc: TransportError) -> int:
    if isinstance(exc, ControlPlaneRequestError) and exc.status_code == 401:
        return _print_error(
            stderr,
            "api error",
            "the access token was rejected. Check `DIGITALOCEAN_ACCESS_TOKEN` or the "
            "`access_token` value in your config.",
            code=EXIT_NETWORK_ERROR,
        )
    return _print_error(stderr, "api error", str(exc), code=EXIT_NETWORK_ERROR)


def _build_service(*, config: CLIConfig, stdout) -> ServerlessService:
    if not config.access_token:
        raise ConfigError(
            "an access token is required; set DIGITALOCEAN_ACCESS_TOKEN or access_token in config"
        )
    client = ControlPlaneClient(
        base_url=config.api_base,
        access_token=config.access_token,
        timeout=config.request_timeout,
    )
    return ServerlessService(
        client=client,
        access_token=config.access_token,
        usual_serverless_dir=config.serverless_dir,
        progress=lambda message: print(message, file=stdout, flush=True),
    )


def _run_version(*, config: CLIConfig, as_json: bool, stdout) -> int:
    payload = {
        "cli": "sls",
        "sdk_version": client_version(),
        "min_serverless_version": get_min_serverless_version(),
        "beta_mode": config.beta_mode,
        "api_base": config.api_base,
    }
    if as_json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"sls {payload['sdk_version']}", file=stdout)
        print(f"serverless toolchain: >= {payload['min_serverless_version']}", file=stdout)
        print(f"api base: {payload['api_base']}", file=stdout)
    return EXIT_SUCCESS


def _run_status(*, args, service: ServerlessService, stdout, stderr) -> int:
    status = service.status()
    if args.json:
        payload = {
            "status": status.value,
            "serverless_dir": str(service.serverless_dir),
            "credentials_dir": str(service.credentials.creds_dir),
        }
        print(json.dumps(payload, sort_keys=True), file=stdout)
    error = status.to_error()
    if error is not None:
        return _print_error(stderr, "status", str(error), code=EXIT_STATUS_ERROR)
    if not args.json:
        print("Connected to functions namespace", file=stdout)
    return EXIT_SUCCESS


def _run_install(*, upgrading: bool, service: ServerlessService, stdout, stderr) -> int:
    status = service.status()
    if upgrading:
        if status is ServerlessStatus.ABSENT:
            return _print_error(stderr, "install error", str(status.to_error()), code=EXIT_STATUS_ERROR)
        if status is not ServerlessStatus.STALE:
            print("Serverless support is already up to date", file=stdout)
            return EXIT_SUCCESS
    elif status is not ServerlessStatus.ABSENT:
        if status is ServerlessStatus.STALE:
            return _print_error(stderr, "install error", str(status.to_error()), code=EXIT_STATUS_ERROR)
        print("Serverless support is already installed", file=stdout)
        return EXIT_SUCCESS

    try:
        service.install_serverless(upgrading=upgrading)
    except InstallActivationError as exc:
        return _print_error(
            stderr,
            "install error",
            f"{exc}; the install is incomplete, run `sls upgrade` again",
            code=EXIT_TOOLCHAIN_ERROR,
        )
    except InstallError as exc:
        return _print_error(stderr, "install error", str(exc), code=EXIT_TOOLCHAIN_ERROR)
    return EXIT_SUCCESS


def _print_credentials_summary(creds, *, as_json: bool, stdout) -> None:
    if as_json:
        print(
            json.dumps({"namespace": creds.namespace, "api_host": creds.api_host}, sort_keys=True),
            file=stdout,
        )
        return
    print(f"Connected to functions namespace '{creds.namespace}' on API host '{creds.api_host}'", file=stdout)


def _run_connect(*, args, service: ServerlessService, stdout, stderr) -> int:
    status = service.status()
    if status in (ServerlessStatus.ABSENT, ServerlessStatus.STALE):
        return _print_error(stderr, "status", str(status.to_error()), code=EXIT_STATUS_ERROR)
    try:
        creds = service.connect(args.namespace)
    except TransportError as exc:
        return _print_transport_error(stderr, exc)
    except (CredentialsError, SchemaValidationError) as exc:
        return _print_error(stderr, "credentials error", str(exc), code=EXIT_VALIDATION_ERROR)
    _print_credentials_summary(creds, as_json=args.json, stdout=stdout)
    return EXIT_SUCCESS


def _run_namespaces_list(*, args, service: ServerlessService, stdout, stderr) -> int:
    try:
        namespaces = service.list_namespaces()
    except TransportError as exc:
        return _print_transport_error(stderr, exc)
    except SchemaValidationError as exc:
        return _print_error(stderr, "api error", str(exc), code=EXIT_NETWORK_ERROR)
    if args.json:
        payload = [
            {
                "namespace": ns.namespace,
                "label": ns.label,
                "region": ns.region,
                "api_host": ns.api_host,
            }
            for ns in namespaces
        ]
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    for ns in namespaces:
        print(f"{ns.label}\t{ns.region}\t{ns.namespace}\t{ns.api_host}", file=stdout)
    return EXIT_SUCCESS


def _run_namespaces_create(*, args, service: ServerlessService, stdout, stderr) -> int:
    try:
        creds = service.create_namespace(args.label, args.region)
    except TransportError as exc:
        return _print_transport_error(stderr, exc)
    except SchemaValidationError as exc:
        return _print_error(stderr, "api error", str(exc), code=EXIT_NETWORK_ERROR)
    if not args.no_connect:
        if service.status() in (ServerlessStatus.ABSENT, ServerlessStatus.STALE):
            print(
                "Namespace created; install or upgrade serverless support to connect to it",
                file=stderr,
            )
        else:
            try:
                creds = service.store_credentials(creds)
            except CredentialsError as exc:
                return _print_error(stderr, "credentials error", str(exc), code=EXIT_VALIDATION_ERROR)
    _print_credentials_summary(creds, as_json=args.json, stdout=stdout)
    return EXIT_SUCCESS


def _run_namespaces_delete(*, args, service: ServerlessService, stdout, stderr) -> int:
    try:
        service.delete_namespace(args.name)
    except TransportError as exc:
        return _print_transport_error(stderr, exc)
    print(f"Deleted namespace {args.name}", file=stdout)
    return EXIT_SUCCESS


def _print_output(output: ServerlessOutput, *, as_json: bool, stdout) -> None:
    if as_json:
        print(json.dumps(output.model_dump(exclude_none=True), sort_keys=True), file=stdout)
        return
    for line in output.formatted or output.captured or []:
        print(line, file=stdout)
    for row in output.table or []:
        print(json.dumps(row, sort_keys=True), file=stdout)
    if output.entity is not None:
        print(json.dumps(output.entity, indent=2, sort_keys=True), file=stdout)


def _run_exec(*, args, service: ServerlessService, stdout, stderr) -> int:
    try:
        service.check_serverless_status()
    except ServerlessStatusError as exc:
        return _print_error(stderr, "status", str(exc), code=EXIT_STATUS_ERROR)

    action_args = list(args.action_args)
    if action_args and action_args[0] == "--":
        action_args = action_args[1:]
    cmd = service.cmd(args.action, action_args)
    try:
        if args.stream:
            service.stream(cmd)
            return EXIT_SUCCESS
        output = service.exec(cmd)
    except ToolchainReportedError as exc:
        if args.json:
            _print_output(exc.output, as_json=True, stdout=stdout)
        return _print_error(stderr, "toolchain error", str(exc), code=EXIT_TOOLCHAIN_ERROR)
    except BridgeExecutionError as exc:
        return _print_error(stderr, "toolchain error", str(exc), code=EXIT_TOOLCHAIN_ERROR)
    _print_output(output, as_json=args.json, stdout=stdout)
    return EXIT_SUCCESS


def _run_host_info(*, args, service: ServerlessService, stdout, stderr) -> int:
    api_host = args.api_host
    try:
        if not api_host:
            api_host = service.get_connected_api_host()
        info = service.get_host_info(api_host)
    except TransportError as exc:
        return _print_transport_error(stderr, exc)
    except (CredentialsError, SchemaValidationError) as exc:
        return _print_error(stderr, "host info error", str(exc), code=EXIT_VALIDATION_ERROR)
    if args.json:
        print(json.dumps(info.model_dump(), sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    print(f"api host: {api_host}", file=stdout)
    for kind in supported_runtime_kinds(info):
        print(f"  {kind}", file=stdout)
    return EXIT_SUCCESS


def _run_functions_get(*, args, service: ServerlessService, stdout, stderr) -> int:
    try:
        service.check_serverless_status()
    except ServerlessStatusError as exc:
        return _print_error(stderr, "status", str(exc), code=EXIT_STATUS_ERROR)
    try:
        action, parameters = service.get_function(args.name, fetch_code=args.code)
    except TransportError as exc:
        return _print_transport_error(stderr, exc)
    except (CredentialsError, SchemaValidationError) as exc:
        return _print_error(stderr, "functions error", str(exc), code=EXIT_VALIDATION_ERROR)
    payload = dict(action)
    payload["parameters"] = [param.model_dump() for param in parameters]
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    print(json.dumps(payload, indent=2, sort_keys=True), file=stdout)
    return EXIT_SUCCESS


def main(argv: Sequence[str] | None = None, *, stdout=sys.stdout, stderr=sys.stderr) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, stderr)

    try:
        config = load_cli_config(args.config)
    except ConfigError as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_VALIDATION_ERROR)

    _emit_beta_warning(config, args.command, stderr)

    if args.command == "version":
        return _run_version(config=config, as_json=args.json, stdout=stdout)

    try:
        service = _build_service(config=config, stdout=stdout)
    except (ConfigError, CredentialsError) as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_VALIDATION_ERROR)

    if args.command == "status":
        return _run_status(args=args, service=service, stdout=stdout, stderr=stderr)

    if args.command == "install":
        return _run_install(upgrading=False, service=service, stdout=stdout, stderr=stderr)

    if args.command == "upgrade":
        return _run_install(upgrading=True, service=service, stdout=stdout, stderr=stderr)

    if args.command == "connect":
        return _run_connect(args=args, service=service, stdout=stdout, stderr=stderr)

    if args.command == "namespaces":
        if args.namespaces_command == "list":
            return _run_namespaces_list(args=args, service=service, stdout=stdout, stderr=stderr)
        if args.namespaces_command == "create":
            return _run_namespaces_create(args=args, service=service, stdout=stdout, stderr=stderr)
        if args.namespaces_command == "delete":
            return _run_namespaces_delete(args=args, service=service, stdout=stdout, stderr=stderr)

    if args.command == "exec":
        return _run_exec(args=args, service=service, stdout=stdout, stderr=stderr)

    if args.command == "host-info":
        return _run_host_info(args=args, service=service, stdout=stdout, stderr=stderr)

    if args.command == "functions":
        if args.functions_command == "get":
            return _run_functions_get(args=args, service=service, stdout=stdout, stderr=stderr)

    print("unknown command", file=stderr)
    return EXIT_VALIDATION_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
