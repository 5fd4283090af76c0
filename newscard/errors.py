"""
Error taxonomy for the newscard pipeline.

Per-candidate failures are recovered by the orchestrator and end up as a
skip reason on the candidate. Process-level failures (configuration,
unrecoverable metadata) stop the CLI with a non-zero exit.
"""


class NewscardError(Exception):
    """Base class for every error raised by newscard."""


class TransientIOError(NewscardError):
    """Network call failed or timed out. Eligible for fallback or skip."""


class ConflictError(NewscardError):
    """A ledger entry with the same url hash already exists."""


class MetadataCorruptError(NewscardError):
    """An embedded metadata block was found but could not be parsed."""


class ImageDecodeError(NewscardError):
    """A background image could not be decoded or resized."""


class ConfigurationError(NewscardError):
    """Required credentials or settings are missing."""

    def __init__(self, missing: list[str] | str):
        if isinstance(missing, str):
            self.missing = [missing]
        else:
            self.missing = list(missing)
        super().__init__(f"Missing required settings: {', '.join(self.missing)}")


class BatchNotFoundError(NewscardError):
    """No candidate batch could be loaded from the issue or the local cache."""
