# -*- mode: python -*-
import struct

import numpy as np
import pytest

sampling_rate = 2**2 * 25e6 / 2**12  # rate=2, decimate=1 (24414.0625 Hz)
spike_interval = 1220
n_inserted = 20
spike_amplitude = 150e-6
noise_sd = 10e-6


def write_sev(
    path, samples, event, channel, *, nchannels=1, version=2, rate=2, decimate=1, data_format=None
):
    """Write samples to an SEV file with a minimal header"""
    samples = np.asarray(samples)
    formats = {"float32": 0, "int32": 1, "int16": 2, "int8": 3, "float64": 4, "int64": 5}
    if data_format is None:
        data_format = formats[samples.dtype.name]
    name = event.encode("ascii")
    if version == 1:
        name = name[::-1]
    header = struct.pack(
        "<Q3sB4sHHHHBBH12x",
        40 + samples.nbytes,
        b"SEV",
        version,
        name,
        channel,
        nchannels,
        samples.dtype.itemsize,
        0,
        data_format,
        decimate,
        rate,
    )
    with open(path, "wb") as fp:
        fp.write(header)
        fp.write(samples.tobytes())


def spike_template():
    t = np.arange(-15, 25)
    return -spike_amplitude * np.exp(-(t**2) / 18.0) + 0.3 * spike_amplitude * np.exp(
        -((t - 8) ** 2) / 32.0
    )


def synthetic_channel(seed, nsamples=36621):
    """Gaussian noise with spikes inserted every spike_interval samples.

    Returns (samples, indices of spike troughs)
    """
    rng = np.random.default_rng(seed)
    samples = rng.normal(0, noise_sd, nsamples)
    template = spike_template()
    trough = int(np.argmin(template))
    times = spike_interval * np.arange(1, n_inserted + 1) + seed % 100
    for t in times:
        start = t - trough
        samples[start : start + template.size] += template
    return samples.astype("f"), times


@pytest.fixture
def recording():
    chans = [synthetic_channel(seed) for seed in (1028, 2931)]
    samples = np.column_stack([c[0] for c in chans])
    times = [c[1] for c in chans]
    return samples, times


@pytest.fixture
def tank(tmp_path, recording):
    """A tank with one block holding a two-channel streamed event"""
    samples, _ = recording
    block_dir = tmp_path / "Tank1" / "Block-1"
    block_dir.mkdir(parents=True)
    for i in range(samples.shape[1]):
        write_sev(
            block_dir / f"Tank1_Block-1_RAW1_ch{i + 1}.sev",
            samples[:, i],
            "RAW1",
            i + 1,
            nchannels=samples.shape[1],
        )
    return tmp_path / "Tank1"
