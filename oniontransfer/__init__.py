"""
oniontransfer — stream files and directories over a single byte-stream connection.

Modules
───────
  errors    — TransferError hierarchy
  streams   — SocketStream (timeouts + cancellation), connect()
  protocol  — Item frame codec, chunked content copy, wire/host name mapping
  progress  — ProgressCounter per item, ConsoleProgress renderer
  fs        — LocalFilesystem (stat / open / list / mkdir / create)
  sender    — Sender (walks items onto a stream), TransferClient
  receiver  — Receiver state machine (rebuilds items under a root)
  server    — TransferServer: accept loop, one thread per connection
  cli       — argparse CLI: listen / send subcommands

The protocol layer only needs an object with read/write, so everything but
server/cli/streams also runs over in-memory streams.
"""

__version__ = "1.0.0"
