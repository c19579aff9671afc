"""Pytest configuration and shared fixtures.

Provides a fake installer cache on disk, fake keep set sources and a
minimal in-memory stand-ins for the ``winreg`` module and msi.dll.
"""

from pathlib import Path

import pytest

from keepset import PATCH, PRODUCT, PackageReference


class FakeSource:
    """Keep set source returning fixed LocalPackage references."""

    def __init__(self, refs=(), error=None):
        self.refs = list(refs)
        self.error = error

    def local_packages(self):
        if self.error is not None:
            raise self.error
        return iter(self.refs)


def products(*paths):
    return FakeSource(PackageReference(PRODUCT, p) for p in paths)


def patches(*paths):
    return FakeSource(PackageReference(PATCH, p) for p in paths)


class _FakeKey:
    def __init__(self, path):
        self.path = path

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeWinreg:
    """Just enough of ``winreg`` for reading the Installer UserData tree.

    ``keys`` maps a full key path (relative to HKLM) to its values.
    Parent keys are created implicitly.
    """

    HKEY_LOCAL_MACHINE = "HKLM"

    def __init__(self, keys, denied=()):
        self.values = {}
        for path, values in keys.items():
            parts = path.split("\\")
            for i in range(1, len(parts) + 1):
                self.values.setdefault("\\".join(parts[:i]).lower(), {})
            self.values[path.lower()] = dict(values)
        self.denied = {d.lower() for d in denied}

    def OpenKey(self, hive, path):
        lower = path.lower()
        if lower in self.denied:
            raise PermissionError(5, "Access is denied", path)
        if lower not in self.values:
            raise FileNotFoundError(2, "The system cannot find the file specified", path)
        return _FakeKey(lower)

    def _children(self, key):
        prefix = key.path + "\\"
        names = {
            p[len(prefix):].split("\\")[0]
            for p in self.values
            if p.startswith(prefix)
        }
        return sorted(names)

    def QueryInfoKey(self, key):
        return (len(self._children(key)), len(self.values[key.path]), 0)

    def EnumKey(self, key, index):
        return self._children(key)[index]

    def QueryValueEx(self, key, name):
        values = self.values[key.path]
        if name not in values:
            raise FileNotFoundError(2, "The system cannot find the file specified", name)
        return values[name], 1


class FakeMsi:
    """Just enough of msi.dll for MsiEnumProductsExW and MsiGetProductInfoExW.

    ``products`` maps a product code to its properties. A ``Sid`` entry
    puts the product in the per-user unmanaged context.
    """

    def __init__(self, products, denied=(), enum_error=None):
        self.products = products
        self.denied = set(denied)
        self.enum_error = enum_error
        self.more_data = 0
        self.info_sids = []

    def MsiEnumProductsExW(self, product, user_sid, context, index,
                           code_buf, context_ref, sid_buf, sid_len_ref):
        if self.enum_error is not None:
            return self.enum_error
        codes = list(self.products)
        if index >= len(codes):
            return 259  # ERROR_NO_MORE_ITEMS
        code = codes[index]
        sid = self.products[code].get("Sid", "")
        sid_len = sid_len_ref._obj
        if sid_len.value <= len(sid):
            sid_len.value = len(sid)
            self.more_data += 1
            return 234  # ERROR_MORE_DATA
        code_buf.value = code
        context_ref._obj.value = 2 if sid else 4
        sid_buf.value = sid
        sid_len.value = len(sid)
        return 0

    def MsiGetProductInfoExW(self, code, user_sid, context, prop, buf, size_ref):
        self.info_sids.append(user_sid)
        if (code, prop) in self.denied:
            return 5  # ERROR_ACCESS_DENIED
        value = self.products[code].get(prop)
        if value is None:
            return 1608  # ERROR_UNKNOWN_PROPERTY
        size = size_ref._obj
        if size.value <= len(value):
            size.value = len(value)
            self.more_data += 1
            return 234
        buf.value = value
        size.value = len(value)
        return 0


@pytest.fixture
def make_cache(tmp_path: Path):
    """Build an installer cache tree: make_cache({"a.msi": b"...", "sub/b.msp": b"..."})."""

    def _make(files):
        root = tmp_path / "Installer"
        root.mkdir(exist_ok=True)
        for rel, content in files.items():
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        return root

    return _make


@pytest.fixture
def quarantine_dir(tmp_path: Path) -> Path:
    return tmp_path / "Quarantine"


def snapshot(root: Path) -> dict:
    """Every path under root mapped to its bytes (None for folders)."""
    return {
        str(p.relative_to(root)): (None if p.is_dir() else p.read_bytes())
        for p in sorted(root.rglob("*"))
    }
