from pulsemon.probes.registry import (
    MultipleRecipients,
    ProbeEntry,
    ProbeFileError,
    ProbeFileParseError,
    ProbeFileReadError,
    ProbeRegistry,
    ProbeSpec,
    Recipient,
    ShellTarget,
    SingleRecipient,
    WebTarget,
    load_probes,
)

__all__ = [
    "MultipleRecipients",
    "ProbeEntry",
    "ProbeFileError",
    "ProbeFileParseError",
    "ProbeFileReadError",
    "ProbeRegistry",
    "ProbeSpec",
    "Recipient",
    "ShellTarget",
    "SingleRecipient",
    "WebTarget",
    "load_probes",
]
