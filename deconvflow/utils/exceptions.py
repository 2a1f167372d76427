"""
Exception classes for deconvflow
"""


class DeconvFlowError(Exception):
    """Base exception for all deconvflow errors."""

    pass


class DataError(DeconvFlowError):
    """Data-related errors (empty, non-numeric, misaligned, etc.)."""

    pass


class DegenerateInputError(DataError):
    """Input has no spots, so per-spot statistics are undefined."""

    pass


class KeyAlignmentError(DataError):
    """Spot identifiers of a matrix are missing from the target table."""

    def __init__(self, missing_keys, target="spot metadata", max_shown=10):
        self.missing_keys = list(missing_keys)
        self.target = target
        shown = ", ".join(str(k) for k in self.missing_keys[:max_shown])
        if len(self.missing_keys) > max_shown:
            shown += f", ... ({len(self.missing_keys) - max_shown} more)"
        super().__init__(
            f"{len(self.missing_keys)} spot id(s) not found in {target}: {shown}"
        )


class ParameterError(DeconvFlowError, ValueError):
    """Invalid parameter errors."""

    pass
