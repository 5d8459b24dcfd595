# -*- mode: python -*-
"""Multichannel data streams and spike-band filtering"""

import dataclasses
import logging
from collections.abc import Sequence

import numpy as np

log = logging.getLogger(__name__)


@dataclasses.dataclass
class Stream:
    samples: np.ndarray  # nsamples x nchannels
    sampling_rate: float  # in Hz
    name: str | None = None
    channels: Sequence[int] | None = None  # 1-based hardware channel numbers
    duration: float = dataclasses.field(init=False)  # in s

    def __post_init__(self):
        self.samples = np.asarray(self.samples)
        if self.samples.ndim == 1:
            self.samples = self.samples[:, np.newaxis]
        elif self.samples.ndim != 2:
            raise ValueError("samples must be a 1-D or 2-D (samples x channels) array")
        if self.sampling_rate <= 0:
            raise ValueError("sampling rate must be positive")
        if self.channels is None:
            self.channels = tuple(range(1, self.nchannels + 1))
        elif len(self.channels) != self.nchannels:
            raise ValueError(
                f"got {len(self.channels)} channel numbers for {self.nchannels} channels"
            )
        self.duration = 1.0 * self.samples.shape[0] / self.sampling_rate

    @property
    def nchannels(self) -> int:
        return self.samples.shape[1]


def round_half_up(x: float) -> int:
    """Round x to the nearest integer, with halves going away from zero"""
    return int(np.sign(x) * np.floor(np.abs(x) + 0.5))


def spike_filter(
    sampling_rate: float,
    pass_band: tuple[float, float] = (500.0, 7000.0),
    stop_band: tuple[float, float] = (100.0, 12000.0),
    pass_ripple: float = 1.0,
    stop_atten: float = 20.0,
) -> np.ndarray:
    """Design a Butterworth bandpass filter to isolate spikes

    sampling_rate: the sampling rate of the data (in Hz)
    pass_band: the edges of the passband (in Hz)
    stop_band: the edges of the stopbands (in Hz)
    pass_ripple: maximum loss in the passband (in dB)
    stop_atten: minimum attenuation in the stopbands (in dB)

    The order is the lowest that meets the ripple and attenuation constraints.
    Returns the filter as second-order sections.

    """
    from scipy.signal import butter, buttord

    stop_lo, stop_hi = stop_band
    pass_lo, pass_hi = pass_band
    if not 0 < stop_lo < pass_lo < pass_hi < stop_hi:
        raise ValueError(
            "band edges must be ordered as 0 < stop_lo < pass_lo < pass_hi < stop_hi"
        )
    if stop_hi >= sampling_rate / 2:
        raise ValueError(
            f"upper stopband edge ({stop_hi} Hz) must be below the Nyquist "
            f"frequency ({sampling_rate / 2} Hz)"
        )
    order, wn = buttord(
        pass_band, stop_band, pass_ripple, stop_atten, fs=sampling_rate
    )
    log.debug("  - spike filter: order %d, natural frequencies %s Hz", order, wn)
    return butter(order, wn, btype="bandpass", output="sos", fs=sampling_rate)


def filtfilt(samples: np.ndarray, sos: np.ndarray) -> np.ndarray:
    """Zero-phase filter samples (nsamples x nchannels) along the time axis.

    Channels are filtered one at a time in double precision and stored in
    single precision.
    """
    from scipy.signal import sosfiltfilt

    samples = np.asarray(samples)
    if samples.ndim == 1:
        return sosfiltfilt(sos, samples.astype("d")).astype("f")
    out = np.empty(samples.shape, dtype="f")
    for i in range(samples.shape[1]):
        log.debug("  - filtering column %d", i)
        out[:, i] = sosfiltfilt(sos, samples[:, i].astype("d"))
    return out


def bandpass(stream: Stream, **filter_args) -> Stream:
    """Bandpass filter a stream to isolate spikes. See spike_filter for arguments"""
    sos = spike_filter(stream.sampling_rate, **filter_args)
    return Stream(
        samples=filtfilt(stream.samples, sos),
        sampling_rate=stream.sampling_rate,
        name=stream.name,
        channels=stream.channels,
    )
