"""rawusb version information."""

__version__ = "0.3.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 0.1.0 - Initial release: enumerate raw bulk/interrupt interfaces, open/claim,
#         synchronous read/write via pyusb
# 0.2.0 - Reference-counted device arena, idempotent close, context teardown
#         closes open handles before exiting libusb
# 0.3.0 - Config file + env overrides (timeouts, auto-detach policy, strict
#         endpoint matching), usb.ids name lookup, `rawusb list/probe` CLI
