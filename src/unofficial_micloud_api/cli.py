"""Command-line interface for the Xiaomi MiOT cloud API.

Usage:
    micloud login                             # log in and store the session
    micloud devices                           # list all devices
    micloud devices --model dreame.vacuum.    # list devices by model prefix
    micloud status                            # vacuum status for all vacuums
    micloud get 123456789 2:1 3:1             # read properties siid:piid
    micloud set 123456789 4 4 2               # set siid 4 / piid 4 to 2
    micloud action 123456789 2 1              # run action siid 2 / aiid 1
    micloud call v2/homeroom/gethome '{"fg": true}'
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path

from . import MiCloudAPI, Region, __version__
from .exceptions import MiCloudError
from .miot import STATUS_PROPERTIES, VACUUM_MODEL_PREFIX, VACUUM_PROPERTIES, VacuumStatus

DEFAULT_SESSION_FILE = Path.home() / ".config" / "micloud" / "session"


def _build_parser() -> argparse.ArgumentParser:
    # Shared arguments inherited by all subcommands
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-r",
        "--region",
        choices=[r.value for r in Region],
        default=os.environ.get("MICLOUD_REGION", "de"),
        help="Cloud server region (default: $MICLOUD_REGION or de)",
    )
    common.add_argument(
        "-u",
        "--username",
        default=os.environ.get("MICLOUD_USERNAME"),
        help="Xiaomi account email, phone or id (default: $MICLOUD_USERNAME, or prompted)",
    )
    common.add_argument(
        "-p",
        "--password",
        default=os.environ.get("MICLOUD_PASSWORD"),
        help="Account password (default: $MICLOUD_PASSWORD, or prompted)",
    )
    common.add_argument(
        "-s",
        "--session-file",
        type=Path,
        default=Path(os.environ.get("MICLOUD_SESSION_FILE", DEFAULT_SESSION_FILE)),
        help="Where the session is stored (default: $MICLOUD_SESSION_FILE or ~/.config/micloud/session)",
    )
    common.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output results as JSON",
    )
    common.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for info, -vv for debug)",
    )

    parser = argparse.ArgumentParser(
        prog="micloud",
        description="Query and control Xiaomi MiOT devices via the cloud API.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("login", parents=[common], help="Log in and store the session")

    devices_parser = sub.add_parser("devices", parents=[common], help="List devices on the account")
    devices_parser.add_argument("--model", default="", metavar="PREFIX", help="Model prefix filter")

    status_parser = sub.add_parser("status", parents=[common], help="Show vacuum status")
    status_parser.add_argument("--device", metavar="NAME", help="Filter by name (substring match)")

    get_parser = sub.add_parser("get", parents=[common], help="Read properties")
    get_parser.add_argument("did", help="Device id")
    get_parser.add_argument("props", nargs="+", metavar="SIID:PIID", help="Properties to read")

    set_parser = sub.add_parser("set", parents=[common], help="Write a property")
    set_parser.add_argument("did", help="Device id")
    set_parser.add_argument("siid", type=int)
    set_parser.add_argument("piid", type=int)
    set_parser.add_argument("value", help="Value (parsed as JSON when possible)")

    action_parser = sub.add_parser("action", parents=[common], help="Invoke an action")
    action_parser.add_argument("did", help="Device id")
    action_parser.add_argument("siid", type=int)
    action_parser.add_argument("aiid", type=int)
    action_parser.add_argument("args", nargs="*", help="Action inputs (parsed as JSON when possible)")

    call_parser = sub.add_parser("call", parents=[common], help="Make a raw encrypted API call")
    call_parser.add_argument("path", help="API path, e.g. v2/homeroom/gethome")
    call_parser.add_argument("params", nargs="?", default="{}", help="JSON parameters")

    return parser


def _configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _parse_value(raw: str):
    """Parse a CLI value as JSON (for booleans, numbers); fall back to string."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return raw


def _get_credentials(args: argparse.Namespace) -> tuple[str, str]:
    """Resolve username and password from args, env, or interactive prompt."""
    username = args.username
    password = args.password

    if not username:
        try:
            username = input("Username: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nAborted.", file=sys.stderr)
            sys.exit(1)
    if not username:
        print("Error: username is required (use --username or $MICLOUD_USERNAME)", file=sys.stderr)
        sys.exit(1)

    if not password:
        try:
            password = getpass.getpass("Password: ")
        except (EOFError, KeyboardInterrupt):
            print("\nAborted.", file=sys.stderr)
            sys.exit(1)
    if not password:
        print("Error: password is required (use --password or $MICLOUD_PASSWORD)", file=sys.stderr)
        sys.exit(1)

    return username, password


def _session_saver(path: Path):
    def save(serialized: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(serialized)
        path.chmod(0o600)

    return save


def _login(api: MiCloudAPI, args: argparse.Namespace) -> None:
    username, password = _get_credentials(args)
    try:
        api.login(username, password)
    except MiCloudError as exc:
        print(f"Login failed: {exc}", file=sys.stderr)
        sys.exit(1)


def _connect(args: argparse.Namespace) -> MiCloudAPI:
    """Create an authenticated client, reusing the stored session when it still works."""
    api = MiCloudAPI(region=args.region, session_saver=_session_saver(args.session_file))
    if args.session_file.exists():
        if api.restore_session(args.session_file.read_text().strip()):
            return api
        print("Stored session expired, logging in again.", file=sys.stderr)
    try:
        _login(api, args)
    except SystemExit:
        api.close()
        raise
    return api


def _cmd_login(args: argparse.Namespace) -> None:
    api = MiCloudAPI(region=args.region, session_saver=_session_saver(args.session_file))
    with api:
        _login(api, args)
    print(f"Session stored in {args.session_file}")


def _cmd_devices(args: argparse.Namespace) -> None:
    with _connect(args) as api:
        devices = api.list_devices(args.model)
        if args.json_output:
            out = [
                {
                    "did": d.did,
                    "name": d.name,
                    "model": d.model,
                    "mac": d.mac,
                    "host": d.host,
                    "online": d.online,
                    "home_id": d.home_id,
                }
                for d in devices
            ]
            print(json.dumps(out, indent=2))
            return

        if not devices:
            print("No devices found.")
            return
        print(f"Found {len(devices)} device(s):\n")
        for d in devices:
            status = "\033[32mOnline\033[0m" if d.online else "\033[31mOffline\033[0m"
            print(f"  {d.name}")
            print(f"    Model:    {d.model}")
            print(f"    Status:   {status}")
            print(f"    DID:      {d.did}")
            if d.mac:
                print(f"    MAC:      {d.mac}")
            if d.host:
                print(f"    Local IP: {d.host}")
            print()


def _cmd_status(args: argparse.Namespace) -> None:
    props = [VACUUM_PROPERTIES[name] for name in STATUS_PROPERTIES]
    with _connect(args) as api:
        devices = api.list_devices(VACUUM_MODEL_PREFIX)
        if args.device:
            needle = args.device.lower()
            devices = [d for d in devices if needle in d.name.lower()]
        if not devices:
            print("[]" if args.json_output else "No vacuums found.")
            return

        all_results = []
        for dev in devices:
            try:
                status = VacuumStatus.from_results(api.read_properties(dev.did, props))
            except MiCloudError as exc:
                print(f"Error fetching {dev.name}: {exc}", file=sys.stderr)
                continue

            if args.json_output:
                all_results.append({
                    "device": dev.name,
                    "did": dev.did,
                    "model": dev.model,
                    "state": status.state,
                    "error": status.error,
                    "battery_pct": status.battery_level,
                    "cleaning": status.is_cleaning,
                    "charging": status.is_charging,
                    "suction_level": status.suction_level,
                    "cleaning_mode": status.cleaning_mode,
                    "water_volume": status.water_volume,
                    "cleaned_area_m2": status.cleaned_area,
                    "cleaning_minutes": status.cleaning_time,
                    "main_brush_pct": status.main_brush_left,
                    "side_brush_pct": status.side_brush_left,
                    "filter_pct": status.filter_left,
                })
            else:
                _print_vacuum_status(dev, status)

        if args.json_output:
            print(json.dumps(all_results, indent=2))


def _print_vacuum_status(dev, status: VacuumStatus) -> None:
    """Pretty-print a single vacuum's status to the terminal."""
    print(f"  {dev.name} ({dev.model})")
    if status.state:
        print(f"    State:          {status.state}")
    if status.error:
        print(f"    Error:          {status.error}")
    if status.battery_level is not None:
        print(f"    Battery:        {status.battery_level}%")
    if status.suction_level:
        print(f"    Suction:        {status.suction_level}")
    if status.cleaning_mode:
        print(f"    Mode:           {status.cleaning_mode}")
    if status.water_volume:
        print(f"    Water:          {status.water_volume}")
    if status.cleaned_area is not None:
        print(f"    Last clean:     {status.cleaned_area} m2 in {status.cleaning_time} min")
    consumables = []
    if status.main_brush_left is not None:
        consumables.append(f"main brush {status.main_brush_left}%")
    if status.side_brush_left is not None:
        consumables.append(f"side brush {status.side_brush_left}%")
    if status.filter_left is not None:
        consumables.append(f"filter {status.filter_left}%")
    if consumables:
        print(f"    Consumables:    {', '.join(consumables)}")
    print()


def _cmd_get(args: argparse.Namespace) -> None:
    refs = []
    for item in args.props:
        try:
            siid, piid = (int(part) for part in item.split(":"))
        except ValueError:
            print(f"Error: expected SIID:PIID, got '{item}'", file=sys.stderr)
            sys.exit(1)
        refs.append((siid, piid))

    with _connect(args) as api:
        results = api.read_properties(args.did, refs)
        if args.json_output:
            print(json.dumps(
                [{"siid": r.siid, "piid": r.piid, "value": r.value, "code": r.code} for r in results],
                indent=2,
            ))
            return
        for r in results:
            value = r.value if r.ok else f"(error {r.code})"
            print(f"  {r.siid}:{r.piid} = {value}")


def _cmd_set(args: argparse.Namespace) -> None:
    value = _parse_value(args.value)
    with _connect(args) as api:
        result = api.write_property(args.did, args.siid, args.piid, value)
        if args.json_output:
            print(json.dumps({"siid": result.siid, "piid": result.piid, "code": result.code}))
        elif result.ok:
            print(f"  {args.did}: OK ({args.siid}:{args.piid}={value!r})")
        else:
            print(f"  {args.did}: FAILED - code {result.code}", file=sys.stderr)
        if not result.ok:
            sys.exit(1)


def _cmd_action(args: argparse.Namespace) -> None:
    inputs = [_parse_value(a) for a in args.args]
    with _connect(args) as api:
        result = api.invoke_action(args.did, args.siid, args.aiid, inputs)
        print(json.dumps(result, indent=2))


def _cmd_call(args: argparse.Namespace) -> None:
    try:
        params = json.loads(args.params)
    except json.JSONDecodeError as exc:
        print(f"Error: params must be JSON: {exc}", file=sys.stderr)
        sys.exit(1)
    with _connect(args) as api:
        print(json.dumps(api.call(args.path, params), indent=2, ensure_ascii=False))


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    commands = {
        "login": _cmd_login,
        "devices": _cmd_devices,
        "status": _cmd_status,
        "get": _cmd_get,
        "set": _cmd_set,
        "action": _cmd_action,
        "call": _cmd_call,
    }
    try:
        commands[args.command](args)
    except MiCloudError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
