"""Manage files and the radio of a LoRa gateway from the command line.

Usage:
    uv run python examples/gateway_cli.py AA:BB:CC:DD:EE:FF ls
    uv run python examples/gateway_cli.py AA:BB:CC:DD:EE:FF put photo.jpg
    uv run python examples/gateway_cli.py AA:BB:CC:DD:EE:FF --dir downloads get photo.jpg
    uv run python examples/gateway_cli.py AA:BB:CC:DD:EE:FF radio --sf 12 --power 20
    uv run python examples/gateway_cli.py AA:BB:CC:DD:EE:FF tx photo.jpg
    uv run python examples/gateway_cli.py AA:BB:CC:DD:EE:FF listen
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace
from datetime import datetime

from lorabridge import (
    DirectorySink,
    LoRaBridgeError,
    LoRaGateway,
    RxComplete,
    RxFailed,
    RxStart,
    RxStatus,
    format_file_size,
)
from lorabridge.models.radio import (
    ACK_INTERVALS,
    BANDWIDTHS_KHZ,
    CODING_RATES,
    SPREADING_FACTORS,
    TX_POWERS_DBM,
)


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _print_progress(label: str):
    last = -1

    def update(percent: int) -> None:
        nonlocal last
        # Only print every 10%
        if percent // 10 != last // 10:
            print(f"  {label}: {percent}%")
        last = percent

    return update


async def cmd_ls(gateway: LoRaGateway, args: argparse.Namespace) -> None:
    records = await gateway.list_files()
    if not records:
        print("No files")
        return
    width = max(len(record.name) for record in records)
    for record in records:
        print(f"  {record.name:<{width}}  {format_file_size(record.size):>10}")


async def cmd_put(gateway: LoRaGateway, args: argparse.Namespace) -> None:
    session = await gateway.upload_file(
        args.path, name=args.name, progress=_print_progress("upload")
    )
    print(f"Uploaded {session.name} ({format_file_size(session.total_size)})")


async def cmd_get(gateway: LoRaGateway, args: argparse.Namespace) -> None:
    artifact = await gateway.download(args.name, progress=_print_progress("download"))
    print(f"Saved {artifact.name} to {artifact.path} ({format_file_size(artifact.size)})")
    if artifact.size_mismatch:
        print(f"  warning: expected {artifact.expected_size} bytes, got {artifact.size}")


async def cmd_rm(gateway: LoRaGateway, args: argparse.Namespace) -> None:
    await gateway.delete(args.name)
    print(f"Deleted {args.name}")


async def cmd_radio(gateway: LoRaGateway, args: argparse.Namespace) -> None:
    config = await gateway.get_radio_config()
    changes = {
        attr: value
        for attr, value in (
            ("bandwidth", args.bw),
            ("spreading_factor", args.sf),
            ("coding_rate", args.cr),
            ("ack_interval", args.ack),
            ("power", args.power),
        )
        if value is not None
    }
    if changes:
        config = replace(config, **changes)
        await gateway.set_radio_config(config)
        print(f"Applied: {config}")
    else:
        print(f"Current: {config}")


async def cmd_tx(gateway: LoRaGateway, args: argparse.Namespace) -> None:
    summary = await gateway.transmit_over_radio(args.name, progress=_print_progress("radio"))
    print(
        f"Sent {format_file_size(summary.size)} in {summary.seconds:g}s "
        f"({summary.kbps:g} kbps), retries={gateway.tx_state.retries}"
    )


async def cmd_listen(gateway: LoRaGateway, args: argparse.Namespace) -> None:
    print(f"Listening for radio receptions on {gateway.mac_address} (Ctrl+C to stop)")
    async for event in gateway.radio_rx_events():
        if isinstance(event, RxStart):
            print(f"[{_timestamp()}] receiving {event.name} ({format_file_size(event.size)})")
        elif isinstance(event, RxStatus):
            print(f"[{_timestamp()}]   {event.done}/{event.total} ({event.percent}%)")
        elif isinstance(event, RxComplete):
            print(f"[{_timestamp()}] received {event.name} in {event.seconds:g}s")
        elif isinstance(event, RxFailed):
            print(f"[{_timestamp()}] reception failed: {event.reason}")


COMMANDS = {
    "ls": cmd_ls,
    "put": cmd_put,
    "get": cmd_get,
    "rm": cmd_rm,
    "radio": cmd_radio,
    "tx": cmd_tx,
    "listen": cmd_listen,
}


async def run(args: argparse.Namespace) -> int:
    gateway = LoRaGateway(args.address, sink=DirectorySink(args.dir))
    try:
        async with gateway:
            if gateway.role:
                print(f"Connected to {gateway.role.name} gateway (MTU {gateway.mtu})")
            await COMMANDS[args.command](gateway, args)
    except LoRaBridgeError as err:
        print(f"Error: {err}")
        return 1
    return 0


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="LoRa gateway file manager over BLE.")
    parser.add_argument("address", help="Gateway BLE address")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--dir",
        default="LoRaDownloads",
        help="Download directory. Default: LoRaDownloads",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("ls", help="List files on the gateway.")

    put = sub.add_parser("put", help="Upload a local file.")
    put.add_argument("path")
    put.add_argument("--name", help="Remote name (default: local file name).")

    get = sub.add_parser("get", help="Download a file.")
    get.add_argument("name")

    rm = sub.add_parser("rm", help="Delete a file.")
    rm.add_argument("name")

    radio = sub.add_parser("radio", help="Show or change the radio configuration.")
    radio.add_argument("--bw", type=int, choices=BANDWIDTHS_KHZ, help="Bandwidth in kHz.")
    radio.add_argument("--sf", type=int, choices=SPREADING_FACTORS, help="Spreading factor.")
    radio.add_argument("--cr", type=int, choices=CODING_RATES, help="Coding rate 4/x.")
    radio.add_argument("--ack", type=int, choices=ACK_INTERVALS, help="ACK interval.")
    radio.add_argument("--power", type=int, choices=TX_POWERS_DBM, help="TX power in dBm.")

    tx = sub.add_parser("tx", help="Transmit a stored file over LoRa.")
    tx.add_argument("name")

    sub.add_parser("listen", help="Print radio reception events.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        raise SystemExit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
