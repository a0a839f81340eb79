"""
Outcome of a flashing run.

The workflow functions in actions.py never raise for user or device
errors; they hand back an OperationResult instead, and the CLI renders it
as text (to_summary) or JSON (to_dict).
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

# Metadata keys rendered as hex in summaries
HEX_FIELDS = ("chip_id", "status", "error", "opcode", "magic", "expected")


def _format_value(key: str, value: Any) -> str:
    if isinstance(value, int) and key in HEX_FIELDS:
        return f"0x{value:X}"
    return str(value)


@dataclass
class OperationResult:
    """
    Result of one operation.

    Attributes:
        ok: Whether the device accepted the whole image
        operation: Name of the operation ("flash")
        chip: Detected chip display name
        region: Written flash range, e.g. "0x00010000-0x00011000"
        bytes_len: Image size in bytes
        hashes: Digests of the source image
        warnings: Non-fatal issues (lenient header check, unpatched magic)
        errors: The error that aborted the run
        metadata: chip_id, block_count and flash params on success;
            error_kind plus the error's context values on failure
        logs: Log lines captured while the operation ran
    """
    ok: bool
    operation: str
    chip: str = ""
    region: str = ""
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def to_summary(self) -> str:
        """Multi-line plain-text report, as printed by the CLI."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.chip:
            lines.append(f"  Chip: {self.chip}")
        if self.region:
            lines.append(f"  Region: {self.region}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")
        for name, value in self.hashes.items():
            lines.append(f"  {name}: {value}")

        for warn in self.warnings:
            lines.append(f"  Warning: {warn}")
        for err in self.errors:
            lines.append(f"  Error: {err}")

        kind = self.metadata.get("error_kind")
        if kind:
            details = ", ".join(
                f"{key}={_format_value(key, value)}"
                for key, value in self.metadata.items()
                if key != "error_kind"
            )
            lines.append(f"  [{kind}] {details}" if details else f"  [{kind}]")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict for JSON output."""
        return asdict(self)

    @classmethod
    def success(cls, operation: str, **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, **kwargs)

    @classmethod
    def failure(cls, operation: str, error: str, **kwargs) -> "OperationResult":
        result = cls(ok=False, operation=operation, **kwargs)
        result.errors.append(error)
        return result
