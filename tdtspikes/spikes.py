# -*- coding: utf-8 -*-
# -*- mode: python -*-
""" Functions for detecting and extracting spikes from filtered recordings """
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import h5py as h5
import numpy as np
import quickspikes as qs
from numpy.typing import ArrayLike

from tdtspikes.signal import Stream, round_half_up

log = logging.getLogger(__name__)

# median(|x|) / 0.6745 is a robust estimate of the noise standard deviation
MAD_SCALE = 0.6745
_schema = "tdtspikes.spikewaveforms"


@dataclass
class DetectionParams:
    """
    n_samples: the number of samples in each extracted waveform
    shadow: the number of samples after a spike in which further events are
            ignored. Defaults to n_samples / 1.25
    thresh_factor: threshold, in units of the robust noise estimate
    """

    n_samples: int = 40
    shadow: int | None = None
    thresh_factor: float = 4.0
    n_before: int = field(init=False)
    n_after: int = field(init=False)
    look_ahead: int = field(init=False)

    def __post_init__(self):
        if self.n_samples < 2:
            raise ValueError("waveforms must have at least 2 samples")
        if self.shadow is None:
            self.shadow = round_half_up(self.n_samples / 1.25)
        if self.shadow < 0:
            raise ValueError("shadow period can't be negative")
        if self.thresh_factor <= 0:
            raise ValueError("threshold factor must be positive")
        self.n_before = round_half_up(self.n_samples / 2.5)
        self.n_after = self.n_samples - self.n_before
        self.look_ahead = math.ceil(self.n_samples * 0.7)


@dataclass
class SpikeWaveforms:
    """
    waveforms: nspikes x npoints array
    times: nspikes array (times of spikes in units of samples)
    sampling_rate: the sampling rate of the spikes and the spike times (in Hz)
    peak_index: the index corresponding to the time of the spike in the waveform
    channel: the (1-based) channel the spikes were recorded on
    threshold: the detection threshold
    """

    waveforms: ArrayLike
    times: ArrayLike
    sampling_rate: float
    peak_index: int
    channel: int = 1
    threshold: float = np.nan

    @property
    def nspikes(self) -> int:
        return len(self.times)

    @property
    def seconds(self) -> np.ndarray:
        return np.asarray(self.times) / self.sampling_rate


def robust_threshold(samples: ArrayLike, factor: float = 4.0) -> float | np.ndarray:
    """Negative spike threshold, -factor * median(|x|) / 0.6745, per column

    See eq. 3.1 in Quiroga, Nadasdy, and Ben-Shaul (2004), Neural Comput 16:1661
    """
    samples = np.asarray(samples)
    return -factor * np.median(np.abs(samples), axis=0) / MAD_SCALE


def find_crossings(samples: ArrayLike, thresh: float) -> np.ndarray:
    """Indices of the samples just before the signal falls through thresh"""
    x = np.asarray(samples)
    return np.flatnonzero((x[:-1] > thresh) & (x[1:] <= thresh))


def find_peaks(samples: ArrayLike, crossings: ArrayLike, look_ahead: int) -> np.ndarray:
    """Locate the negative peak following each threshold crossing.

    The peak is the first sample within look_ahead samples of the crossing
    that is followed by two rising steps. If there is no such sample, the
    crossing is the peak. Crossings too close to the end of the signal to
    search the full window are dropped.

    """
    x = np.asarray(samples)
    crossings = np.asarray(crossings, dtype="i8")
    crossings = crossings[crossings + look_ahead + 2 < x.size]
    if crossings.size == 0:
        return crossings
    rising = (x[:-2] < x[1:-1]) & (x[1:-1] < x[2:])
    windows = np.lib.stride_tricks.sliding_window_view(rising, look_ahead + 1)[
        crossings
    ]
    offsets = np.where(windows.any(axis=1), windows.argmax(axis=1), 0)
    return crossings + offsets


def apply_shadow(peaks: ArrayLike, shadow: int) -> np.ndarray:
    """Drop peaks that occur less than shadow samples after the last retained peak.

    Coincident peaks are always reduced to one. The first peak of a burst is
    kept; dropping each peak that is followed too closely by the next one
    (diff(peaks) < shadow) would instead keep the last.
    """
    peaks = np.sort(np.asarray(peaks, dtype="i8"))
    keep = []
    last = None
    for peak in peaks:
        if last is None or peak - last >= max(shadow, 1):
            keep.append(peak)
            last = peak
    return np.asarray(keep, dtype="i8")


def extract_waveforms(
    samples: ArrayLike, peaks: ArrayLike, n_before: int, n_after: int
) -> tuple[np.ndarray, np.ndarray]:
    """Cut samples[peak - n_before:peak + n_after] for each peak.

    Peaks whose windows would run past either end of the signal are dropped.
    A window must also end before the last sample (peak + n_after < nsamples),
    because quickspikes.peaks rejects a window that ends exactly at the end of
    the data. Returns (waveforms, peaks that were kept)

    """
    # quickspikes needs a writable buffer
    x = np.require(samples, requirements=("C", "W"))
    peaks = np.asarray(peaks, dtype="i8")
    peaks = peaks[(peaks >= n_before) & (peaks + n_after < x.size)]
    return qs.peaks(x, peaks, n_before=n_before, n_after=n_after), peaks


def detect_channel(
    samples: ArrayLike,
    sampling_rate: float,
    params: DetectionParams,
    channel: int = 1,
    thresh: float | None = None,
) -> SpikeWaveforms:
    """Detect spikes in one channel of filtered data.

    If thresh is None, it is estimated from the data with robust_threshold.
    """
    x = np.asarray(samples)
    if thresh is None:
        thresh = float(robust_threshold(x, params.thresh_factor))
    crossings = find_crossings(x, thresh)
    peaks = find_peaks(x, crossings, params.look_ahead)
    peaks = apply_shadow(peaks, params.shadow)
    waveforms, times = extract_waveforms(x, peaks, params.n_before, params.n_after)
    log.debug(
        "  - channel %d: %d crossings, %d spikes after shadowing and edge removal",
        channel,
        crossings.size,
        times.size,
    )
    return SpikeWaveforms(
        waveforms, times, sampling_rate, params.n_before, channel, thresh
    )


def detect_spikes(stream: Stream, params: DetectionParams) -> list[SpikeWaveforms]:
    """Detect spikes independently in each channel of a filtered stream"""
    thresholds = np.atleast_1d(robust_threshold(stream.samples, params.thresh_factor))
    out = []
    for i, channel in enumerate(stream.channels):
        spikes = detect_channel(
            stream.samples[:, i],
            stream.sampling_rate,
            params,
            channel=channel,
            thresh=float(thresholds[i]),
        )
        log.info(
            "  - channel %3d: threshold %.3g, %d spikes",
            channel,
            spikes.threshold,
            spikes.nspikes,
        )
        out.append(spikes)
    return out


def save_waveforms(
    path: Path,
    channels: list[SpikeWaveforms],
    **attributes: Any,
) -> None:
    """Save spike waveforms from one or more channels to an hdf5 file

    path: the location of the file (will overwrite)
    attributes: any additional metadata to store in the file

    Each channel is stored in a group named 'ch<N>'. Waveforms should be stored
    as they were recorded. The `peak_index` attribute refers to the negative
    peak that the spikes were aligned to.

    """
    with h5.File(path, "w") as fp:
        for spikes in channels:
            waveforms = np.asarray(spikes.waveforms)
            times = np.asarray(spikes.times)
            if waveforms.shape[0] != times.size:
                raise ValueError(
                    "number of rows in waveform array must match number of elements in times array"
                )
            grp = fp.create_group(f"ch{spikes.channel}")
            grp.attrs["channel"] = spikes.channel
            grp.attrs["threshold"] = spikes.threshold
            # unchunked storage uses the most space but allows random access
            dset_spikes = grp.create_dataset("waveforms", data=waveforms)
            dset_spikes.attrs["sampling_rate"] = spikes.sampling_rate
            dset_spikes.attrs["peak_index"] = spikes.peak_index
            dset_times = grp.create_dataset("times", data=times)
            dset_times.attrs["sampling_rate"] = spikes.sampling_rate

        fp.attrs["schema"] = _schema
        fp.attrs["schema_ver"] = 1
        for k, v in attributes.items():
            fp.attrs[k] = v


def load_waveforms(path: Path) -> tuple[list[SpikeWaveforms], dict]:
    """Load spike waveforms from an hdf5 file written by save_waveforms.

    Returns a list of SpikeWaveforms sorted by channel and the top-level
    attributes of the file.
    """
    out = []
    with h5.File(path, "r") as fp:
        if fp.attrs.get("schema") != _schema:
            raise ValueError(f"{path} is not a spike waveform file")
        attrs = dict(fp.attrs)
        for grp in fp.values():
            dset_spikes = grp["waveforms"]
            out.append(
                SpikeWaveforms(
                    dset_spikes[:],
                    grp["times"][:],
                    dset_spikes.attrs["sampling_rate"],
                    int(dset_spikes.attrs["peak_index"]),
                    int(grp.attrs["channel"]),
                    float(grp.attrs["threshold"]),
                )
            )
    return sorted(out, key=lambda s: s.channel), attrs
