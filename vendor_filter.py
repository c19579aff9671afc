"""
InstallerClean — Vendor filter: cached installers that must never be disposed of.

A file is excluded when any vendor pattern matches its filename OR the
subject of its Authenticode signing certificate.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

SignatureReader = Callable[[str], Optional[str]]

SIGNATURE_TIMEOUT_S = 30

_PS_SUBJECT = (
    "[Console]::OutputEncoding = [Text.Encoding]::UTF8; "
    "$s = Get-AuthenticodeSignature -LiteralPath $env:IC_TARGET; "
    "if ($s.SignerCertificate) { $s.SignerCertificate.Subject }"
)


def read_signature_subject(path: str) -> Optional[str]:
    """Return the signer certificate subject of ``path``, or None.

    Unsigned files, corrupt signatures and any failure to run PowerShell
    all come back as None.
    """
    env = dict(os.environ, IC_TARGET=path)
    try:
        result = subprocess.run(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command", _PS_SUBJECT],
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=SIGNATURE_TIMEOUT_S,
            env=env,
        )
    except (subprocess.SubprocessError, OSError, ValueError) as exc:
        logger.debug("Signature lookup failed for %s: %s", path, exc)
        return None
    if result.returncode != 0:
        logger.debug("Signature lookup failed for %s: %s", path, result.stderr.strip())
        return None
    subject = result.stdout.strip()
    return subject or None


def _compile(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        # Vendor names like "C++ Runtime" are meant literally.
        return re.compile(re.escape(pattern), re.IGNORECASE)


class VendorFilter:
    """Predicate deciding whether a cache file is exempt from disposal."""

    def __init__(
        self,
        patterns: Sequence[str],
        signature_reader: Optional[SignatureReader] = read_signature_subject,
    ) -> None:
        self.patterns = tuple(patterns)
        self._compiled: List[re.Pattern] = [_compile(p) for p in self.patterns]
        self._signature_reader = signature_reader

    def __bool__(self) -> bool:
        return bool(self._compiled)

    def matches(self, text: Optional[str]) -> bool:
        if not text:
            return False
        return any(rx.search(text) for rx in self._compiled)

    def is_excluded(self, path: str) -> bool:
        if not self._compiled:
            return False
        if self.matches(os.path.basename(path)):
            return True
        if self._signature_reader is None:
            return False
        try:
            subject = self._signature_reader(path)
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            logger.debug("Signature read error for %s: %s", path, exc)
            return False
        if self.matches(subject):
            logger.debug("%s excluded by signer %r", path, subject)
            return True
        return False
