#!/usr/bin/env python3
"""
rawusb - Command Line Interface

Entry point for the rawusb package.
"""

import argparse
import logging
import sys

from rawusb import usbid
from rawusb.__version__ import __version__
from rawusb.context import get_or_init_context, shutdown
from rawusb.errors import DiscoveryError, UsbError, UsbTimeoutError


def _hex_id(text):
    """Parse a 16-bit hex ID such as ``1209`` or ``0x1209``."""
    try:
        value = int(text, 16)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a hex ID: {text!r}")
    if not 0 <= value <= 0xFFFF:
        raise argparse.ArgumentTypeError(f"ID out of range: {text!r}")
    return value


def _vid_pid(text):
    """Parse ``VID:PID`` (hex)."""
    vid, sep, pid = text.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected VID:PID, got {text!r}")
    return _hex_id(vid), _hex_id(pid)


def _setup_logging(verbose):
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING)


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="rawusb",
        description="Raw USB interrupt/bulk device access",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    rawusb list                          List every raw interface
    rawusb list --vid 1209               Only vendor 0x1209
    rawusb probe 1209:0001 --write 0102 --read 64
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    list_parser = subparsers.add_parser("list", help="List raw bulk/interrupt interfaces")
    list_parser.add_argument("--vid", type=_hex_id, default=0, help="Vendor ID filter (hex)")
    list_parser.add_argument("--pid", type=_hex_id, default=0, help="Product ID filter (hex)")

    probe_parser = subparsers.add_parser("probe", help="Open a device, write and/or read")
    probe_parser.add_argument("target", type=_vid_pid, help="Device as VID:PID (hex)")
    probe_parser.add_argument("--interface", "-i", type=int, default=None,
                              help="Interface index (default: first match)")
    probe_parser.add_argument("--write", "-w", metavar="HEX", default=None,
                              help="Bytes to write, as hex")
    probe_parser.add_argument("--read", "-r", metavar="N", type=int, default=0,
                              help="Number of bytes to read")
    probe_parser.add_argument("--timeout", "-t", metavar="MS", type=int, default=1000,
                              help="Transfer timeout in milliseconds (0 = none)")

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0

    try:
        if args.command == "list":
            return list_devices(args.vid, args.pid)
        elif args.command == "probe":
            vid, pid = args.target
            return probe(vid, pid, interface=args.interface, write_hex=args.write,
                         read_len=args.read, timeout=args.timeout)
    finally:
        shutdown()

    return 0


def _format_info(index, info):
    """Format a matched interface for display."""
    return (
        f"[{index}] {info.path}  {usbid.describe(info)}\n"
        f"      class: {usbid.classify(info)}  "
        f"interface {info.interface} alt {info.interface_alternate} "
        f"({usbid.classify(info, interface=True)})\n"
        f"      IN 0x{info.reader:02x} {info.reader_transfer_type}  "
        f"OUT 0x{info.writer:02x} {info.writer_transfer_type}"
    )


def list_devices(vendor_id=0, product_id=0, ctx=None):
    """List raw interfaces."""
    ctx = ctx or get_or_init_context()
    try:
        infos = ctx.enumerate(vendor_id, product_id)
    except DiscoveryError as e:
        for info in e.partial:
            info.release()
        print(f"Error: {e}")
        return 1
    except UsbError as e:
        print(f"Error: {e}")
        return 1

    try:
        if not infos:
            print("No raw USB interfaces found.")
            return 1
        for i, info in enumerate(infos, 1):
            print(_format_info(i, info))
        return 0
    finally:
        for info in infos:
            info.release()


def probe(vendor_id, product_id, interface=None, write_hex=None, read_len=0,
          timeout=1000, ctx=None):
    """Open a device, optionally write then read, and close it."""
    ctx = ctx or get_or_init_context()

    try:
        payload = bytes.fromhex(write_hex) if write_hex else None
    except ValueError:
        print(f"Error: invalid hex payload {write_hex!r}")
        return 1

    try:
        infos = ctx.enumerate(vendor_id, product_id)
    except DiscoveryError as e:
        for info in e.partial:
            info.release()
        print(f"Error: {e}")
        return 1
    except UsbError as e:
        print(f"Error: {e}")
        return 1

    target = None
    for info in infos:
        if target is None and (interface is None or info.interface == interface):
            target = info
        else:
            info.release()

    if target is None:
        print(f"No raw interface found on {vendor_id:04x}:{product_id:04x}")
        return 1

    try:
        with ctx.open(target, read_timeout=timeout, write_timeout=timeout) as dev:
            print(f"Opened {dev.info}")
            if payload is not None:
                n = dev.write(payload)
                print(f"Wrote {n} bytes")
            if read_len:
                data = dev.read_bytes(read_len)
                print(f"Read {len(data)} bytes: {data.hex(' ')}")
        return 0
    except UsbTimeoutError as e:
        print(f"Timeout: {e}")
        return 1
    except UsbError as e:
        print(f"Error: {e}")
        return 1
    finally:
        target.release()


if __name__ == "__main__":
    sys.exit(main())
