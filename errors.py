from __future__ import annotations


class CertificateError(Exception):
    """Base class for everything the certificate pipeline raises on purpose."""


class InputValidationError(CertificateError, ValueError):
    """Blocking, user-visible problem with the inputs (missing template, no rows, bad format)."""


class ResourceDecodeError(CertificateError):
    """An uploaded resource (font, PDF template, image) could not be decoded."""


class CountMismatchError(CertificateError):
    def __init__(self, mismatches: list) -> None:
        self.mismatches = list(mismatches)
        details = "; ".join(str(m) for m in self.mismatches)
        super().__init__(f"Value counts do not match and were not confirmed: {details}")


class ExportError(CertificateError, RuntimeError):
    def __init__(self, row_index: int, cause: BaseException) -> None:
        self.row_index = row_index
        self.cause = cause
        super().__init__(f"Certificate for row {row_index + 1} failed: {cause}")
