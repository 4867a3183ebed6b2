#signaltrue/policies/attachment_policy.py
from __future__ import annotations

import os
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Union


class RejectReason(str, Enum):
    too_large = "too_large"
    invalid_type = "invalid_type"
    invalid_filename = "invalid_filename"
    empty_file = "empty_file"
    missing_file = "missing_file"
    scan_failed = "scan_failed"
    storage_error = "storage_error"


@dataclass(frozen=True)
class Accept:
    media_type: str
    filename: str


@dataclass(frozen=True)
class Reject:
    reason: RejectReason
    message: str


PolicyDecision = Union[Accept, Reject]


class SizeCheck(str, Enum):
    CONTINUE = "continue"
    ABORT = "abort"


# media type -> extensions that may carry it
ALLOWED_MEDIA_TYPES: Dict[str, FrozenSet[str]] = {
    "image/png": frozenset({".png"}),
    "image/jpeg": frozenset({".jpg", ".jpeg"}),
    "image/gif": frozenset({".gif"}),
    "application/pdf": frozenset({".pdf"}),
    "text/plain": frozenset({".txt", ".log", ".md"}),
    "text/csv": frozenset({".csv"}),
}

MEDIA_TYPE_ALIASES: Dict[str, str] = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "application/csv": "text/csv",
}

# Declared types that carry no information; the extension decides.
UNDECLARED_MEDIA_TYPES = frozenset({"", "application/octet-stream"})

EXECUTABLE_MEDIA_TYPES = frozenset(
    {
        "application/x-msdownload",
        "application/x-msdos-program",
        "application/x-dosexec",
        "application/x-executable",
        "application/x-elf",
        "application/x-mach-binary",
        "application/x-sharedlib",
        "application/x-msi",
        "application/vnd.microsoft.portable-executable",
        "application/x-sh",
        "application/x-bat",
    }
)

EXECUTABLE_EXTENSIONS = frozenset(
    {".exe", ".dll", ".com", ".scr", ".msi", ".bat", ".cmd", ".ps1", ".vbs", ".sh", ".elf", ".so", ".dylib", ".jar"}
)

# ELF, Mach-O (32/64, both byte orders). PE is checked separately.
EXECUTABLE_SIGNATURES = (
    b"\x7fELF",
    b"\xfe\xed\xfa\xce",
    b"\xfe\xed\xfa\xcf",
    b"\xce\xfa\xed\xfe",
    b"\xcf\xfa\xed\xfe",
)

MAX_FILENAME_LENGTH = 255


def normalize_media_type(raw: Optional[str]) -> str:
    """
    "Text/Plain; charset=utf-8" -> "text/plain"
    """
    base = (raw or "").split(";", 1)[0].strip().lower()
    return MEDIA_TYPE_ALIASES.get(base, base)


def sanitize_filename(raw: Optional[str]) -> Optional[str]:
    """
    Returns the bare file name with directory components and control characters
    stripped, or None when nothing usable remains. NUL bytes are never repaired.
    """
    if raw is None or "\x00" in raw:
        return None

    normalized = unicodedata.normalize("NFC", raw)
    cleaned = "".join(ch for ch in normalized if unicodedata.category(ch)[0] != "C")
    # client may send either separator regardless of our platform
    candidate = cleaned.replace("\\", "/").rsplit("/", 1)[-1]
    candidate = candidate.strip(" .")
    if not candidate:
        return None

    if len(candidate) > MAX_FILENAME_LENGTH:
        stem, ext = os.path.splitext(candidate)
        candidate = stem[: MAX_FILENAME_LENGTH - len(ext)] + ext
    return candidate


def _is_pe(head: bytes) -> bool:
    # "MZ" alone is common in text; require the PE header that e_lfanew (0x3C) points at
    if not head.startswith(b"MZ") or len(head) < 0x40:
        return False
    offset = int.from_bytes(head[0x3C:0x40], "little")
    return offset >= 0x40 and head[offset : offset + 4] == b"PE\0\0"


def looks_executable(head: bytes) -> bool:
    return _is_pe(head) or any(head.startswith(sig) for sig in EXECUTABLE_SIGNATURES)


class AttachmentPolicy:
    """
    Stateless upload constraints. Every method is a pure function of its inputs.
    """

    def __init__(
        self,
        *,
        max_bytes: int,
        allowed_media_types: Mapping[str, FrozenSet[str]] = ALLOWED_MEDIA_TYPES,
    ):
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive.")
        self.max_bytes = max_bytes
        self.allowed_media_types = dict(allowed_media_types)

    def check_size_so_far(self, bytes_consumed: int) -> SizeCheck:
        if bytes_consumed > self.max_bytes:
            return SizeCheck.ABORT
        return SizeCheck.CONTINUE

    def too_large(self) -> Reject:
        return Reject(
            RejectReason.too_large,
            f"File too large (max: {self.max_bytes} bytes).",
        )

    def _media_type_for_extension(self, ext: str) -> Optional[str]:
        for media_type, extensions in self.allowed_media_types.items():
            if ext in extensions:
                return media_type
        return None

    def evaluate(
        self,
        declared_media_type: Optional[str],
        declared_size: int,
        filename: Optional[str],
        head: bytes = b"",
    ) -> PolicyDecision:
        safe_name = sanitize_filename(filename)
        if safe_name is None:
            return Reject(RejectReason.invalid_filename, "Filename is empty or contains illegal characters.")

        if declared_size <= 0:
            return Reject(RejectReason.empty_file, "File is empty.")
        if self.check_size_so_far(declared_size) is SizeCheck.ABORT:
            return self.too_large()

        media_type = normalize_media_type(declared_media_type)
        ext = os.path.splitext(safe_name)[1].lower()

        # executables are refused whatever else the request claims
        if media_type in EXECUTABLE_MEDIA_TYPES or ext in EXECUTABLE_EXTENSIONS or looks_executable(head):
            return Reject(RejectReason.invalid_type, "Executable files are not allowed.")

        allowed_hint = "Allowed types: " + ", ".join(sorted(self.allowed_media_types)) + "."

        if media_type in UNDECLARED_MEDIA_TYPES:
            inferred = self._media_type_for_extension(ext)
            if inferred is None:
                return Reject(
                    RejectReason.invalid_type,
                    f"Invalid file type for extension '{ext or 'none'}'. {allowed_hint}",
                )
            return Accept(media_type=inferred, filename=safe_name)

        extensions = self.allowed_media_types.get(media_type)
        if extensions is None:
            return Reject(RejectReason.invalid_type, f"Invalid file type '{media_type}'. {allowed_hint}")
        if ext not in extensions:
            return Reject(
                RejectReason.invalid_type,
                f"File extension '{ext or 'none'}' does not match declared type '{media_type}'.",
            )
        return Accept(media_type=media_type, filename=safe_name)
