"""
InstallerClean — Keep set: installer cache files still referenced by the system.

Two sources are consulted:
  1. Windows Installer API (msi.dll): every product whose state is
     "fully installed", resolved to its cached LocalPackage.
  2. The Installer UserData registry hierarchy:
       HKLM\\SOFTWARE\\Microsoft\\Windows\\CurrentVersion\\Installer\\UserData\\<SID>\\Products\\<ProductCode>\\InstallProperties
         -> LocalPackage value
       HKLM\\SOFTWARE\\Microsoft\\Windows\\CurrentVersion\\Installer\\UserData\\<SID>\\Patches\\<PatchCode>
         -> LocalPackage value

Only bare, lower-cased filenames are kept. Lookup ignores the folder a
file lives in.
"""

from __future__ import annotations

import ctypes
import logging
import ntpath
from dataclasses import dataclass
from typing import FrozenSet, Iterator, List, NamedTuple, Optional, Sequence

from models import InstallerCleanError

logger = logging.getLogger(__name__)

PRODUCT = "product"
PATCH = "patch"

USERDATA_KEY = r"SOFTWARE\Microsoft\Windows\CurrentVersion\Installer\UserData"


class KeepSetUnavailable(InstallerCleanError):
    """Installer state could not be queried; classifying would be unsafe."""


class PackageReference(NamedTuple):
    provenance: str     # PRODUCT or PATCH
    local_package: str  # Path as recorded by Windows Installer


@dataclass(frozen=True)
class KeepSet:
    """Read-only set of filenames still in use."""
    names: FrozenSet[str]
    product_count: int = 0
    patch_count: int = 0

    def __contains__(self, filename: object) -> bool:
        return isinstance(filename, str) and filename.lower() in self.names

    def __len__(self) -> int:
        return len(self.names)


def _basename(path: str) -> str:
    # Installer paths are always Windows paths, whatever we run on.
    return ntpath.basename(path.strip().strip('"')).lower()


def build_keep_set(sources: Sequence) -> KeepSet:
    """Collect LocalPackage references from every source.

    Each source exposes ``local_packages()`` returning PackageReference
    items. Duplicates across sources collapse.

    Raises:
        KeepSetUnavailable: a source could not reach installer state.
    """
    names = set()
    products = set()
    patches = set()

    for source in sources:
        label = type(source).__name__
        try:
            for ref in source.local_packages():
                name = _basename(ref.local_package)
                if not name:
                    continue
                names.add(name)
                (patches if ref.provenance == PATCH else products).add(name)
        except KeepSetUnavailable:
            raise
        except OSError as exc:
            raise KeepSetUnavailable(f"{label}: {exc}") from exc
        logger.debug("%s: %d names collected so far", label, len(names))

    logger.info(
        "Keep set built: %d files (%d product packages, %d patch packages)",
        len(names), len(products), len(patches),
    )
    return KeepSet(frozenset(names), len(products), len(patches))


def default_sources() -> List:
    return [MsiProductSource(), UserDataRegistrySource()]


# ── 1. Windows Installer API ─────────────────────────────────────────────────

ERROR_SUCCESS = 0
ERROR_ACCESS_DENIED = 5
ERROR_MORE_DATA = 234
ERROR_NO_MORE_ITEMS = 259

MSIINSTALLCONTEXT_USERMANAGED = 1
MSIINSTALLCONTEXT_USERUNMANAGED = 2
MSIINSTALLCONTEXT_MACHINE = 4
MSIINSTALLCONTEXT_ALL = 7

INSTALLSTATE_DEFAULT = "5"      # Product is fully installed
ALL_USERS_SID = "s-1-1-0"


class MsiProductSource:
    """Installed products reported by msi.dll (MsiEnumProductsExW)."""

    def __init__(self, msi=None) -> None:
        self._msi = msi

    def _load(self):
        if self._msi is None:
            try:
                self._msi = ctypes.WinDLL("msi")
            except (AttributeError, OSError) as exc:
                raise KeepSetUnavailable(f"Windows Installer API unavailable: {exc}") from exc
        return self._msi

    def local_packages(self) -> Iterator[PackageReference]:
        msi = self._load()
        for code, context, sid in self._enum_products(msi):
            state = self._product_info(msi, code, sid, context, "State")
            if state != INSTALLSTATE_DEFAULT:
                logger.debug("Skipping %s (state %s)", code, state)
                continue
            package = self._product_info(msi, code, sid, context, "LocalPackage")
            if package:
                yield PackageReference(PRODUCT, package)

    def _enum_products(self, msi) -> Iterator[tuple]:
        index = 0
        while True:
            code = ctypes.create_unicode_buffer(39)
            context = ctypes.c_uint(0)
            sid_len = ctypes.c_uint(256)
            sid = ctypes.create_unicode_buffer(sid_len.value)
            rc = msi.MsiEnumProductsExW(
                None, ALL_USERS_SID, MSIINSTALLCONTEXT_ALL, index,
                code, ctypes.byref(context), sid, ctypes.byref(sid_len),
            )
            if rc == ERROR_NO_MORE_ITEMS:
                return
            if rc == ERROR_MORE_DATA:
                # Only the SID buffer can be too small; retry this index.
                sid_len = ctypes.c_uint(sid_len.value + 1)
                sid = ctypes.create_unicode_buffer(sid_len.value)
                rc = msi.MsiEnumProductsExW(
                    None, ALL_USERS_SID, MSIINSTALLCONTEXT_ALL, index,
                    code, ctypes.byref(context), sid, ctypes.byref(sid_len),
                )
            if rc != ERROR_SUCCESS:
                raise KeepSetUnavailable(f"MsiEnumProductsExW failed with error {rc}")
            user_sid = None if context.value == MSIINSTALLCONTEXT_MACHINE else sid.value
            yield code.value, context.value, user_sid
            index += 1

    def _product_info(self, msi, code: str, sid: Optional[str], context: int,
                      prop: str) -> str:
        """Read one product property, returning empty string when unknown."""
        size = ctypes.c_uint(260)
        buf = ctypes.create_unicode_buffer(size.value)
        rc = msi.MsiGetProductInfoExW(code, sid, context, prop, buf, ctypes.byref(size))
        if rc == ERROR_MORE_DATA:
            size = ctypes.c_uint(size.value + 1)
            buf = ctypes.create_unicode_buffer(size.value)
            rc = msi.MsiGetProductInfoExW(code, sid, context, prop, buf, ctypes.byref(size))
        if rc == ERROR_ACCESS_DENIED:
            raise KeepSetUnavailable(f"Access denied reading {prop} of {code}")
        if rc != ERROR_SUCCESS:
            return ""
        return buf.value


# ── 2. UserData registry hierarchy ───────────────────────────────────────────

class UserDataRegistrySource:
    """Product and patch LocalPackage values under Installer\\UserData."""

    def __init__(self, reg=None) -> None:
        self._reg = reg

    def _load(self):
        if self._reg is None:
            try:
                import winreg
            except ImportError as exc:
                raise KeepSetUnavailable("Windows registry unavailable") from exc
            self._reg = winreg
        return self._reg

    def local_packages(self) -> Iterator[PackageReference]:
        reg = self._load()
        try:
            root = reg.OpenKey(reg.HKEY_LOCAL_MACHINE, USERDATA_KEY)
        except FileNotFoundError:
            logger.info("No Installer UserData hierarchy; nothing to add")
            return
        except PermissionError as exc:
            raise KeepSetUnavailable(f"Access denied to HKLM\\{USERDATA_KEY}") from exc

        with root:
            for sid in _subkeys(reg, root):
                base = f"{USERDATA_KEY}\\{sid}"
                for code in _subkeys_of(reg, f"{base}\\Products"):
                    package = _local_package(reg, f"{base}\\Products\\{code}\\InstallProperties")
                    if package:
                        yield PackageReference(PRODUCT, package)
                for code in _subkeys_of(reg, f"{base}\\Patches"):
                    patch_key = f"{base}\\Patches\\{code}"
                    package = (_local_package(reg, patch_key)
                               or _local_package(reg, f"{patch_key}\\Properties"))
                    if package:
                        yield PackageReference(PATCH, package)


def _subkeys(reg, key) -> List[str]:
    names = []
    count = reg.QueryInfoKey(key)[0]
    for i in range(count):
        try:
            names.append(reg.EnumKey(key, i))
        except OSError:
            continue
    return names


def _subkeys_of(reg, path: str) -> List[str]:
    try:
        with reg.OpenKey(reg.HKEY_LOCAL_MACHINE, path) as key:
            return _subkeys(reg, key)
    except OSError:
        return []


def _local_package(reg, path: str) -> str:
    try:
        with reg.OpenKey(reg.HKEY_LOCAL_MACHINE, path) as key:
            value, _ = reg.QueryValueEx(key, "LocalPackage")
    except OSError:
        return ""
    return str(value) if value else ""
