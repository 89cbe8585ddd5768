"""Distribution archive extraction and installation swap tests."""

from __future__ import annotations

import os
import threading
import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest

from jmeter_runner.domain.errors import ExtractionError
from jmeter_runner.installation.installer import (
    INVALID_DISTRIBUTION_MESSAGE,
    DistributionInstaller,
    detect_distribution_root,
)


def _entries(directory: Path) -> list[str]:
    return sorted(entry.name for entry in directory.iterdir())


def test_install_nested_root_into_canonical_dir(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    archive = make_distribution_zip(tmp_path / "upload" / "jmeter.zip")
    target = tmp_path / "installations"

    canonical = DistributionInstaller().install(archive, target)

    assert canonical == target / "jmeter"
    assert (canonical / "bin" / "jmeter").is_file()
    assert (canonical / "lib" / "ApacheJMeter_core.jar").read_bytes() == b"jar"
    assert _entries(target) == ["jmeter"]
    assert archive.exists()


def test_install_flat_archive(tmp_path: Path, make_distribution_zip: Callable[..., Path]) -> None:
    archive = make_distribution_zip(tmp_path / "flat.zip", root=None)

    canonical = DistributionInstaller().install(archive, tmp_path / "installations")

    assert (canonical / "bin" / "jmeter").is_file()
    assert (canonical / "LICENSE").read_text() == "Apache License"


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_installed_unix_binary_is_executable(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    archive = make_distribution_zip(tmp_path / "jmeter.zip")

    canonical = DistributionInstaller().install(archive, tmp_path / "installations")

    assert os.access(canonical / "bin" / "jmeter", os.X_OK)


def test_windows_only_layout_is_accepted(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    archive = make_distribution_zip(tmp_path / "win.zip", binary_name="jmeter.bat")

    canonical = DistributionInstaller().install(archive, tmp_path / "installations")

    assert (canonical / "bin" / "jmeter.bat").is_file()


def test_missing_binary_is_rejected_and_staging_removed(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    archive = make_distribution_zip(tmp_path / "bad.zip", binary_name=None)
    target = tmp_path / "installations"

    with pytest.raises(ExtractionError) as excinfo:
        DistributionInstaller().install(archive, target)

    assert str(excinfo.value) == INVALID_DISTRIBUTION_MESSAGE
    assert _entries(target) == []


def test_traversal_entries_are_rejected(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    archive = make_distribution_zip(tmp_path / "evil.zip", extra={"../escaped.txt": "x"})
    target = tmp_path / "installations"

    with pytest.raises(ExtractionError, match=r"invalid zip entry: \.\./escaped\.txt"):
        DistributionInstaller().install(archive, target)

    assert not (tmp_path / "escaped.txt").exists()
    assert _entries(target) == []


def test_corrupt_archive_is_rejected(tmp_path: Path) -> None:
    archive = tmp_path / "corrupt.zip"
    archive.write_bytes(b"PK\x03\x04 definitely not a zip")
    target = tmp_path / "installations"

    with pytest.raises(ExtractionError, match="invalid distribution archive"):
        DistributionInstaller().install(archive, target)
    assert _entries(target) == []


def test_failed_install_keeps_previous_installation(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    target = tmp_path / "installations"
    installer = DistributionInstaller()
    installer.install(make_distribution_zip(tmp_path / "good.zip"), target)

    with pytest.raises(ExtractionError):
        installer.install(make_distribution_zip(tmp_path / "bad.zip", binary_name=None), target)

    assert (target / "jmeter" / "bin" / "jmeter").is_file()
    assert _entries(target) == ["jmeter"]


def test_reinstall_replaces_previous_installation(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    target = tmp_path / "installations"
    installer = DistributionInstaller()
    first = make_distribution_zip(tmp_path / "a.zip", extra={"apache-jmeter-5.6.3/old.txt": "a"})
    installer.install(first, target)
    assert (target / "jmeter" / "old.txt").exists()

    installer.install(make_distribution_zip(tmp_path / "b.zip", root="apache-jmeter-5.6.4"), target)

    assert not (target / "jmeter" / "old.txt").exists()
    assert _entries(target) == ["jmeter"]


def test_install_bytes_does_not_retain_upload(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    data = make_distribution_zip(tmp_path / "upload.zip").read_bytes()
    target = tmp_path / "installations"

    canonical = DistributionInstaller().install_bytes(data, target)

    assert (canonical / "bin" / "jmeter").is_file()
    assert _entries(target) == ["jmeter"]


def test_stale_staging_directories_are_removed(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    target = tmp_path / "installations"
    (target / ".staging-crashed" / "bin").mkdir(parents=True)
    (target / ".retired-old").mkdir()
    (target / "keep-me").mkdir()

    DistributionInstaller().install(make_distribution_zip(tmp_path / "jmeter.zip"), target)

    assert _entries(target) == ["jmeter", "keep-me"]


def test_concurrent_installs_leave_one_complete_installation(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    target = tmp_path / "installations"
    archives = [make_distribution_zip(tmp_path / f"a{index}.zip") for index in range(4)]
    installer = DistributionInstaller()
    errors: list[BaseException] = []

    def worker(archive: Path) -> None:
        try:
            installer.install(archive, target)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(archive,)) for archive in archives]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert _entries(target) == ["jmeter"]
    assert (target / "jmeter" / "bin" / "jmeter").is_file()


def test_uninstall_removes_canonical_dir(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    target = tmp_path / "installations"
    installer = DistributionInstaller()
    installer.install(make_distribution_zip(tmp_path / "jmeter.zip"), target)

    assert installer.uninstall(target)
    assert not installer.uninstall(target)
    assert _entries(target) == []


def test_detect_distribution_root_prefers_top_level(tmp_path: Path) -> None:
    (tmp_path / "bin").mkdir()
    (tmp_path / "bin" / "jmeter").write_text("#!/bin/sh\n")
    (tmp_path / "nested" / "bin").mkdir(parents=True)
    (tmp_path / "nested" / "bin" / "jmeter").write_text("#!/bin/sh\n")

    assert detect_distribution_root(tmp_path) == tmp_path
    assert detect_distribution_root(tmp_path / "nested" / "bin") is None


def test_archive_directory_entries_are_created(tmp_path: Path) -> None:
    archive = tmp_path / "dirs.zip"
    with zipfile.ZipFile(archive, "w") as handle:
        handle.writestr("jm/", b"")
        handle.writestr("jm/bin/", b"")
        handle.writestr("jm/bin/jmeter", "#!/bin/sh\n")
        handle.writestr("jm/docs/", b"")

    canonical = DistributionInstaller().install(archive, tmp_path / "installations")

    assert (canonical / "docs").is_dir()


def _rewrite_headers(archive: Path, *, method: int | None = None, flags: int = 0) -> None:
    """Patch every local and central header in place."""
    data = bytearray(archive.read_bytes())
    layouts = ((b"PK\x03\x04", 6, 8), (b"PK\x01\x02", 8, 10))
    for signature, flags_at, method_at in layouts:
        offset = data.find(signature)
        while offset != -1:
            span = slice(offset + flags_at, offset + flags_at + 2)
            current = int.from_bytes(data[span], "little")
            data[span] = (current | flags).to_bytes(2, "little")
            if method is not None:
                data[offset + method_at : offset + method_at + 2] = method.to_bytes(2, "little")
            offset = data.find(signature, offset + 4)
    archive.write_bytes(bytes(data))


def test_unknown_compression_method_is_rejected(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    archive = make_distribution_zip(tmp_path / "odd.zip")
    _rewrite_headers(archive, method=99)
    target = tmp_path / "installations"

    with pytest.raises(ExtractionError, match="unsupported distribution archive"):
        DistributionInstaller().install(archive, target)
    assert _entries(target) == []


def test_encrypted_archive_is_rejected(
    tmp_path: Path, make_distribution_zip: Callable[..., Path]
) -> None:
    archive = make_distribution_zip(tmp_path / "locked.zip")
    _rewrite_headers(archive, flags=0x1)
    target = tmp_path / "installations"

    with pytest.raises(ExtractionError, match="unsupported distribution archive"):
        DistributionInstaller().install(archive, target)
    assert _entries(target) == []


def test_unexpected_error_still_discards_staging(
    tmp_path: Path,
    make_distribution_zip: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    archive = make_distribution_zip(tmp_path / "jmeter.zip")
    target = tmp_path / "installations"

    def _explode(staging: Path) -> Path | None:
        raise ValueError("layout check crashed")

    monkeypatch.setattr(
        "jmeter_runner.installation.installer.detect_distribution_root", _explode
    )

    with pytest.raises(ValueError, match="layout check crashed"):
        DistributionInstaller().install(archive, target)
    assert _entries(target) == []
