# -*- mode: python -*-
"""Read and write Plexon PLX files

A PLX file consists of a 7504-byte file header, one 1020-byte header for each
DSP (spike) channel, and then a sequence of data blocks. Each block has a
16-byte header, which may be followed by one or more waveforms stored as
16-bit integers. This module writes version 106 files containing only spike
channels; the reader understands enough of the format to parse them back (and
skips over event and continuous blocks in files from other sources).

"""
import datetime
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import NamedTuple

import numpy as np
import pandas as pd

from tdtspikes.spikes import SpikeWaveforms

log = logging.getLogger(__name__)

MAGIC = 0x58454C50  # 'PLEX'
VERSION = 106
MAX_COUNT_CHANNELS = 130  # size of the per-channel count tables in the header
MAX_UNITS = 5
SPIKE_BLOCK = 1
BITS_PER_SAMPLE = 16
# with these values, Plexon readers convert stored values from µV to mV
SPIKE_MAX_MAGNITUDE_MV = 32768
SPIKE_PREAMP_GAIN = 1000

_file_header_dtype = np.dtype(
    [
        ("magic", "<u4"),
        ("version", "<i4"),
        ("comment", "S128"),
        ("ad_frequency", "<i4"),
        ("n_dsp_channels", "<i4"),
        ("n_event_channels", "<i4"),
        ("n_slow_channels", "<i4"),
        ("n_points_wave", "<i4"),
        ("n_points_pre_thr", "<i4"),
        ("year", "<i4"),
        ("month", "<i4"),
        ("day", "<i4"),
        ("hour", "<i4"),
        ("minute", "<i4"),
        ("second", "<i4"),
        ("fast_read", "<i4"),
        ("waveform_freq", "<i4"),
        ("last_timestamp", "<f8"),
        ("trodalness", "u1"),
        ("data_trodalness", "u1"),
        ("bits_per_spike_sample", "u1"),
        ("bits_per_slow_sample", "u1"),
        ("spike_max_magnitude_mv", "<u2"),
        ("slow_max_magnitude_mv", "<u2"),
        ("spike_preamp_gain", "<u2"),
        ("acquiring_software", "S18"),
        ("processing_software", "S18"),
        ("padding", "V10"),
        ("ts_counts", "<i4", (MAX_COUNT_CHANNELS, MAX_UNITS)),
        ("wf_counts", "<i4", (MAX_COUNT_CHANNELS, MAX_UNITS)),
        ("ev_counts", "<i4", (512,)),
    ]
)

_chan_header_dtype = np.dtype(
    [
        ("name", "S32"),
        ("sig_name", "S32"),
        ("channel", "<i4"),
        ("wf_rate", "<i4"),
        ("sig", "<i4"),
        ("ref", "<i4"),
        ("gain", "<i4"),
        ("filter", "<i4"),
        ("threshold", "<i4"),
        ("method", "<i4"),
        ("n_units", "<i4"),
        ("template", "<i2", (MAX_UNITS, 64)),
        ("fit", "<i4", (MAX_UNITS,)),
        ("sort_width", "<i4"),
        ("boxes", "<i2", (MAX_UNITS, 2, 4)),
        ("sort_beg", "<i4"),
        ("comment", "S128"),
        ("src_id", "u1"),
        ("reserved", "u1"),
        ("chan_id", "<u2"),
        ("padding", "V40"),
    ]
)

_block_header_dtype = np.dtype(
    [
        ("type", "<i2"),
        ("upper_timestamp", "<u2"),
        ("timestamp", "<u4"),
        ("channel", "<i2"),
        ("unit", "<i2"),
        ("n_waveforms", "<i2"),
        ("n_words", "<i2"),
    ]
)


class PlxFile(NamedTuple):
    """Contents of a PLX file.

    header: file header fields
    channels: channel header fields, one dict per spike channel
    spikes: one row per spike, with channel, unit, timestamp (in ticks of
            the AD frequency), and time (in s)
    waveforms: nspikes x npoints array of stored (int16) values
    """

    header: dict
    channels: list[dict]
    spikes: pd.DataFrame
    waveforms: np.ndarray


def plx_filename(tank: str | Path, block: str) -> str:
    """Name of the PLX file for a tank and block: <tank>_<block>.plx"""
    return f"{Path(tank).name}_{block}.plx"


def _to_int16(waveforms: np.ndarray, scale: float) -> np.ndarray:
    info = np.iinfo("i2")
    scaled = np.rint(np.asarray(waveforms, dtype="d") * scale)
    return np.clip(scaled, info.min, info.max).astype("<i2")


def write_plx(
    path: Path,
    spikes: Sequence[SpikeWaveforms],
    *,
    scale: float = 1e6,
    comment: str = "",
    date: datetime.datetime | None = None,
) -> None:
    """Write spike waveforms from one or more channels to a PLX file

    path: the location of the file (will overwrite)
    spikes: one SpikeWaveforms object per channel. All channels need to have
            the same sampling rate and waveform length.
    scale: factor applied to the waveforms before they are rounded to 16-bit
           integers. The default converts volts to µV.
    comment: stored in the file header (truncated to 127 characters)
    date: the creation date to store in the header (default now)

    All spikes are assigned to unit 0 (unsorted). Timestamps are in ticks of
    the AD frequency, which is the sampling rate rounded to the nearest Hz.

    """
    from tdtspikes.core import __version__

    if len(spikes) == 0:
        raise ValueError("need at least one channel to write a PLX file")
    sampling_rate = spikes[0].sampling_rate
    peak_index = spikes[0].peak_index
    npoints = np.asarray(spikes[0].waveforms).shape[1]
    for s in spikes:
        if s.sampling_rate != sampling_rate:
            raise ValueError("all channels must have the same sampling rate")
        if np.asarray(s.waveforms).shape[1] != npoints:
            raise ValueError("all channels must have the same waveform length")
    ad_frequency = int(round(sampling_rate))
    if date is None:
        date = datetime.datetime.now()

    block_dtype = np.dtype(
        _block_header_dtype.descr + [("waveform", "<i2", (npoints,))]
    )
    blocks = np.zeros(sum(s.nspikes for s in spikes), dtype=block_dtype)
    hdr = np.zeros(1, dtype=_file_header_dtype)
    chan_hdrs = np.zeros(len(spikes), dtype=_chan_header_dtype)
    offset = 0
    for i, s in enumerate(spikes):
        ticks = np.rint(s.seconds * ad_frequency).astype("i8")
        n = ticks.size
        block = blocks[offset : offset + n]
        block["type"] = SPIKE_BLOCK
        block["upper_timestamp"] = ticks >> 32
        block["timestamp"] = ticks & 0xFFFFFFFF
        block["channel"] = s.channel
        block["unit"] = 0
        block["n_waveforms"] = 1
        block["n_words"] = npoints
        if n > 0:
            block["waveform"] = _to_int16(s.waveforms, scale)
        offset += n

        ch = chan_hdrs[i]
        ch["name"] = f"sig{s.channel:03d}".encode("ascii")
        ch["sig_name"] = ch["name"]
        ch["channel"] = s.channel
        ch["sig"] = s.channel
        ch["ref"] = s.channel
        ch["gain"] = 1
        if not np.isnan(s.threshold):
            ch["threshold"] = int(round(float(s.threshold) * scale))
        ch["sort_width"] = npoints
        ch["src_id"] = 1
        ch["chan_id"] = s.channel
        if 0 <= s.channel < MAX_COUNT_CHANNELS:
            hdr["ts_counts"][0, s.channel, 0] = n
            hdr["wf_counts"][0, s.channel, 0] = n
        else:
            log.debug("  - channel %d is too high to be counted in header", s.channel)

    blocks = blocks[
        np.lexsort((blocks["channel"], blocks["timestamp"], blocks["upper_timestamp"]))
    ]
    hdr["magic"] = MAGIC
    hdr["version"] = VERSION
    hdr["comment"] = comment.encode("utf-8")[:127]
    hdr["ad_frequency"] = ad_frequency
    hdr["n_dsp_channels"] = len(spikes)
    hdr["n_points_wave"] = npoints
    hdr["n_points_pre_thr"] = peak_index
    hdr["year"] = date.year
    hdr["month"] = date.month
    hdr["day"] = date.day
    hdr["hour"] = date.hour
    hdr["minute"] = date.minute
    hdr["second"] = date.second
    hdr["waveform_freq"] = ad_frequency
    if blocks.size > 0:
        last = blocks[-1]
        hdr["last_timestamp"] = (int(last["upper_timestamp"]) << 32) + int(
            last["timestamp"]
        )
    hdr["trodalness"] = 1
    hdr["data_trodalness"] = 1
    hdr["bits_per_spike_sample"] = BITS_PER_SAMPLE
    hdr["bits_per_slow_sample"] = BITS_PER_SAMPLE
    hdr["spike_max_magnitude_mv"] = SPIKE_MAX_MAGNITUDE_MV
    hdr["slow_max_magnitude_mv"] = SPIKE_MAX_MAGNITUDE_MV
    hdr["spike_preamp_gain"] = SPIKE_PREAMP_GAIN
    hdr["acquiring_software"] = b"TDT"
    hdr["processing_software"] = f"tdtspikes {__version__}".encode("ascii")[:17]

    with open(path, "wb") as fp:
        fp.write(hdr.tobytes())
        fp.write(chan_hdrs.tobytes())
        fp.write(blocks.tobytes())
    log.debug("  - wrote %d spikes on %d channels to %s", blocks.size, len(spikes), path)


def _record_to_dict(rec: np.void) -> dict:
    out = {}
    for name in rec.dtype.names:
        if name in ("padding", "reserved"):
            continue
        val = rec[name]
        if isinstance(val, bytes):
            val = val.decode("ascii", errors="replace")
        elif isinstance(val, np.ndarray):
            val = val.copy()
        else:
            val = val.item()
        out[name] = val
    return out


def read_plx(path: Path) -> PlxFile:
    """Read the headers and spike data blocks of a PLX file"""
    buf = Path(path).read_bytes()
    if len(buf) < _file_header_dtype.itemsize:
        raise ValueError(f"{path} is too short to be a PLX file")
    hdr = np.frombuffer(buf, dtype=_file_header_dtype, count=1)[0]
    if hdr["magic"] != MAGIC:
        raise ValueError(f"{path} is not a PLX file")
    header = _record_to_dict(hdr)
    offset = _file_header_dtype.itemsize
    nchan = header["n_dsp_channels"]
    chan_hdrs = []
    if nchan > 0:
        chan_hdrs = np.frombuffer(
            buf, dtype=_chan_header_dtype, count=nchan, offset=offset
        )
    offset += _chan_header_dtype.itemsize * nchan
    # event and slow channel headers
    offset += 296 * header["n_event_channels"] + 296 * header["n_slow_channels"]

    records = []
    waveforms = []
    block_size = _block_header_dtype.itemsize
    while offset + block_size <= len(buf):
        block = np.frombuffer(buf, dtype=_block_header_dtype, count=1, offset=offset)[0]
        offset += block_size
        nwords = int(block["n_waveforms"]) * int(block["n_words"])
        if block["type"] == SPIKE_BLOCK:
            timestamp = (int(block["upper_timestamp"]) << 32) + int(block["timestamp"])
            records.append((int(block["channel"]), int(block["unit"]), timestamp))
            waveforms.append(
                np.frombuffer(buf, dtype="<i2", count=nwords, offset=offset)
            )
        offset += 2 * nwords

    spikes = pd.DataFrame.from_records(
        np.array(
            records,
            dtype=[("channel", "i4"), ("unit", "i4"), ("timestamp", "i8")],
        )
    )
    spikes["time"] = spikes.timestamp / header["ad_frequency"]
    if waveforms:
        waveforms = np.stack(waveforms)
    else:
        waveforms = np.zeros((0, header["n_points_wave"]), dtype="i2")
    return PlxFile(
        header, [_record_to_dict(ch) for ch in chan_hdrs], spikes, waveforms
    )
