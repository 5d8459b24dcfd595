# -*- mode: python -*-
"""Read TDT SEV files

SEV files hold one channel of a streamed event (store), optionally split into
hour-long chunks. Each file begins with a 40-byte header followed by raw
little-endian samples.

"""
import logging
import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import NamedTuple

import numpy as np

from tdtspikes.signal import Stream

log = logging.getLogger(__name__)

HEADER_SIZE = 40

_header_dtype = np.dtype(
    [
        ("file_size", "<u8"),
        ("file_type", "S3"),
        ("file_version", "u1"),
        ("event_name", "S4"),
        ("channel", "<u2"),
        ("total_channels", "<u2"),
        ("sample_width", "<u2"),
        ("reserved", "<u2"),
        ("data_format", "u1"),
        ("decimate", "u1"),
        ("rate", "<u2"),
        ("padding", "V12"),
    ]
)

_data_formats = ("<f4", "<i4", "<i2", "i1", "<f8", "<i8")

_re_filename = re.compile(
    r".*_(?P<event>[^_]+)_[Cc]h(?P<channel>\d+)(?:_[Hh](?P<hour>\d+))?$"
)


class SevHeader(NamedTuple):
    event_name: str
    channel: int
    total_channels: int
    dtype: np.dtype
    sampling_rate: float
    file_version: int


class SevFile(NamedTuple):
    path: Path
    event_name: str
    channel: int
    hour: int


def read_header(path: Path) -> SevHeader:
    """Parse the header of an SEV file"""
    with open(path, "rb") as fp:
        raw = fp.read(HEADER_SIZE)
    if len(raw) < HEADER_SIZE:
        raise ValueError(f"{path} is too short to be an SEV file")
    hdr = np.frombuffer(raw, dtype=_header_dtype)[0]
    if hdr["file_type"] != b"SEV":
        raise ValueError(f"{path} is not an SEV file")
    version = int(hdr["file_version"])
    if version == 0:
        raise ValueError(f"{path}: SEV version 0 files have no header")
    name = hdr["event_name"].decode("ascii", errors="replace").strip("\x00 ")
    if version == 1:
        name = name[::-1]
    fmt = int(hdr["data_format"]) & 7
    if fmt >= len(_data_formats):
        raise ValueError(f"{path}: unknown data format {fmt}")
    dtype = np.dtype(_data_formats[fmt])
    if hdr["sample_width"] != dtype.itemsize:
        log.warning(
            "  - warning: %s reports %d-byte samples for %s data",
            path,
            hdr["sample_width"],
            dtype,
        )
    decimate = int(hdr["decimate"]) or 1
    sampling_rate = 2.0 ** int(hdr["rate"]) * 25e6 / 2**12 / decimate
    return SevHeader(
        name,
        int(hdr["channel"]),
        int(hdr["total_channels"]),
        dtype,
        sampling_rate,
        version,
    )


def find_files(block_dir: Path) -> list[SevFile]:
    """Locate the SEV files in a block, sorted by event, channel and hour"""
    block_dir = Path(block_dir)
    if not block_dir.is_dir():
        raise FileNotFoundError(f"block directory {block_dir} does not exist")
    out = []
    for path in block_dir.iterdir():
        if path.suffix.lower() != ".sev":
            continue
        m = _re_filename.match(path.stem)
        if m is not None:
            out.append(
                SevFile(path, m["event"], int(m["channel"]), int(m["hour"] or 0))
            )
        else:
            hdr = read_header(path)
            log.debug("  - %s: using event name from header", path.name)
            out.append(SevFile(path, hdr.event_name, hdr.channel, 0))
    return sorted(out, key=lambda f: (f.event_name, f.channel, f.hour))


def event_names(block_dir: Path) -> list[str]:
    """Returns the names of the streamed events stored in block_dir"""
    return sorted(set(f.event_name for f in find_files(block_dir)))


def read_channel(paths: Iterable[Path]) -> tuple[np.ndarray, SevHeader]:
    """Read the data for a single channel from one or more (hour) chunks.

    Returns (samples, header of first chunk)
    """
    chunks = []
    header = None
    for path in paths:
        hdr = read_header(path)
        if header is None:
            header = hdr
        elif hdr.dtype != header.dtype or hdr.sampling_rate != header.sampling_rate:
            raise ValueError(f"{path} does not match format of preceding chunks")
        chunks.append(np.memmap(path, dtype=hdr.dtype, mode="r", offset=HEADER_SIZE))
    if header is None:
        raise FileNotFoundError("no SEV files for channel")
    if len(chunks) == 1:
        return chunks[0], header
    return np.concatenate(chunks), header


def read_stream(
    block_dir: Path, event: str, channels: Sequence[int] | None = None
) -> Stream:
    """Load the channels of a streamed event into memory.

    channels: the (1-based) channels to load. If None, loads all of them.
    """
    by_channel = defaultdict(list)
    for f in find_files(block_dir):
        if f.event_name == event:
            by_channel[f.channel].append(f.path)
    if not by_channel:
        raise FileNotFoundError(f"no SEV files for '{event}' in {block_dir}")
    if channels is None:
        channels = sorted(by_channel)
    else:
        if len(set(channels)) != len(channels):
            raise ValueError(f"channel list {list(channels)} contains duplicates")
        missing = [c for c in channels if c not in by_channel]
        if missing:
            raise FileNotFoundError(
                f"no SEV files for '{event}' channel(s) {missing} in {block_dir}"
            )

    data = []
    sampling_rate = None
    for channel in channels:
        samples, hdr = read_channel(by_channel[channel])
        log.debug(
            "  - channel %d: %d samples (%s) from %d file(s)",
            channel,
            samples.size,
            hdr.dtype,
            len(by_channel[channel]),
        )
        if sampling_rate is None:
            sampling_rate = hdr.sampling_rate
        elif hdr.sampling_rate != sampling_rate:
            raise ValueError(
                f"channel {channel} sampling rate ({hdr.sampling_rate} Hz) doesn't "
                f"match channel {channels[0]} ({sampling_rate} Hz)"
            )
        data.append(samples)

    nsamples = min(d.size for d in data)
    if any(d.size != nsamples for d in data):
        log.warning(
            "  - warning: channels have different lengths; truncating to %d samples",
            nsamples,
        )
    samples = np.column_stack([d[:nsamples] for d in data])
    return Stream(samples, sampling_rate, name=event, channels=tuple(channels))
