"""SSH helpers for sitepush."""

from .commands import BEGIN_MARKER, END_MARKER, MarkerResult, run_with_markers, wrap_remote_command
from .copy import RemoteCopyError, SourceVanishedError, push_file
from .listing import RemoteListing, RemoteListingError, RemoteRootMissing, list_remote_entries
from .privileged import RemediationResult, run_privileged
from .selector import Transport, TransportMode, select_transport
from .transport import SSHCommandError, SSHResult, run_ssh_command

__all__ = [
    "SSHCommandError",
    "SSHResult",
    "MarkerResult",
    "run_ssh_command",
    "run_with_markers",
    "wrap_remote_command",
    "BEGIN_MARKER",
    "END_MARKER",
    "RemoteListing",
    "RemoteListingError",
    "RemoteRootMissing",
    "list_remote_entries",
    "RemoteCopyError",
    "SourceVanishedError",
    "push_file",
    "RemediationResult",
    "run_privileged",
    "Transport",
    "TransportMode",
    "select_transport",
]
