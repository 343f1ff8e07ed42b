"""Archive packaging and checksums.

Design goals:

- Deterministic archive names (the name is the upload key, re-runs must hit
  the same asset)
- Byte-identical archives for identical binaries (fixed mtime, owner and mode)
- A ``.sha256`` sidecar in ``shasum -a 256`` format next to every archive
"""

from __future__ import annotations

import gzip
import hashlib
import io
import tarfile
from pathlib import Path
from zipfile import ZIP_DEFLATED, ZipFile, ZipInfo

from rp.core.result import Err, Ok, Result
from rp.platform.files import atomic_write_bytes, atomic_write_text
from rp.release.errors import PipelineError
from rp.release.model import BuildArtifact, BuiltBinary, ReleaseTag

__all__ = [
    "archive_name",
    "checksum_line",
    "package_binary",
    "sha256_hex",
]

_BINARY_MODE = 0o755
# ZIP cannot represent timestamps before 1980.
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def archive_name(*, tool: str, version: str, family: str, arch: str, ext: str) -> str:
    return f"{tool}-{version}-{family}-{arch}.{ext}"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def checksum_line(checksum: str, name: str) -> str:
    return f"{checksum}  {name}\n"


def _tar_gz(member: str, binary: bytes) -> bytes:
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w", format=tarfile.GNU_FORMAT) as tar:
        info = tarfile.TarInfo(name=member)
        info.size = len(binary)
        info.mode = _BINARY_MODE
        info.mtime = 0
        info.uid = info.gid = 0
        info.uname = info.gname = ""
        tar.addfile(info, io.BytesIO(binary))

    out = io.BytesIO()
    with gzip.GzipFile(filename="", mode="wb", fileobj=out, mtime=0) as gz:
        gz.write(raw.getvalue())
    return out.getvalue()


def _zip(member: str, binary: bytes) -> bytes:
    out = io.BytesIO()
    with ZipFile(out, "w", compression=ZIP_DEFLATED) as zf:
        info = ZipInfo(member, date_time=_ZIP_EPOCH)
        info.external_attr = (0o100000 | _BINARY_MODE) << 16
        info.compress_type = ZIP_DEFLATED
        zf.writestr(info, binary)
    return out.getvalue()


def package_binary(
    built: BuiltBinary,
    *,
    tag: ReleaseTag,
    tool: str,
    out_dir: Path,
    ext: str,
) -> Result[BuildArtifact, PipelineError]:
    """Archive one built binary and write its checksum sidecar.

    Writes ``<out_dir>/<archive>`` and ``<out_dir>/<archive>.sha256``; nothing
    leaves the machine here.
    """
    target = built.target
    name = archive_name(
        tool=tool,
        version=tag.version,
        family=target.family,
        arch=target.arch,
        ext=ext,
    )
    member = f"{tool}{target.exe_suffix}"

    match ext:
        case "tar.gz":
            data = _tar_gz(member, built.binary)
        case "zip":
            data = _zip(member, built.binary)
        case _:
            return Err(
                PipelineError(
                    kind="package_failed",
                    message=f"unsupported archive extension: {ext}",
                    hint="Use tar.gz or zip",
                )
            )

    checksum = sha256_hex(data)
    archive_path = out_dir / name
    checksum_path = out_dir / f"{name}.sha256"
    try:
        atomic_write_bytes(archive_path, data)
        atomic_write_text(checksum_path, checksum_line(checksum, name))
    except OSError as e:
        return Err(
            PipelineError(
                kind="package_failed",
                message=f"cannot write archive {name}: {e}",
                hint=str(out_dir),
            )
        )

    return Ok(
        BuildArtifact(
            target=target,
            binary=built.binary,
            archive_name=name,
            archive_path=archive_path,
            checksum=checksum,
            checksum_path=checksum_path,
        )
    )
