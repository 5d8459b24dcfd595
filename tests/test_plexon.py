# -*- mode: python -*-
import datetime

import numpy as np
import pytest

from tdtspikes import plexon
from tdtspikes.spikes import SpikeWaveforms

sampling_rate = 24414.0625
npoints = 40


@pytest.fixture
def channels():
    rng = np.random.default_rng(1028)
    return [
        SpikeWaveforms(
            rng.normal(0, 50e-6, size=(3, npoints)),
            np.array([100, 5000, 20000]),
            sampling_rate,
            16,
            1,
            -40e-6,
        ),
        SpikeWaveforms(
            rng.normal(0, 50e-6, size=(2, npoints)),
            np.array([2500, 30000]),
            sampling_rate,
            16,
            2,
            -35e-6,
        ),
        SpikeWaveforms(np.zeros((0, npoints)), np.zeros(0, dtype="i8"), sampling_rate, 16, 3, -30e-6),
    ]


def test_header_sizes():
    assert plexon._file_header_dtype.itemsize == 7504
    assert plexon._chan_header_dtype.itemsize == 1020
    assert plexon._block_header_dtype.itemsize == 16


def test_plx_filename():
    assert plexon.plx_filename("/data/tanks/Tank1", "Block-2") == "Tank1_Block-2.plx"


def test_write_plx_layout(tmp_path, channels):
    path = tmp_path / "test.plx"
    plexon.write_plx(path, channels)
    expected = 7504 + 1020 * len(channels) + 5 * (16 + 2 * npoints)
    assert path.stat().st_size == expected


def test_write_read_plx(tmp_path, channels):
    path = tmp_path / "test.plx"
    date = datetime.datetime(2016, 4, 12, 13, 45, 10)
    plexon.write_plx(path, channels, comment="Tank1/Block-1 RAW1", date=date)
    plx = plexon.read_plx(path)

    hdr = plx.header
    assert hdr["magic"] == plexon.MAGIC
    assert hdr["version"] == plexon.VERSION
    assert hdr["comment"] == "Tank1/Block-1 RAW1"
    assert hdr["ad_frequency"] == 24414
    assert hdr["waveform_freq"] == 24414
    assert hdr["n_dsp_channels"] == 3
    assert hdr["n_event_channels"] == 0
    assert hdr["n_points_wave"] == npoints
    assert hdr["n_points_pre_thr"] == 16
    assert (hdr["year"], hdr["month"], hdr["day"]) == (2016, 4, 12)
    assert hdr["ts_counts"][1:4, 0].tolist() == [3, 2, 0]
    assert hdr["wf_counts"][1:4, 0].tolist() == [3, 2, 0]

    assert [ch["channel"] for ch in plx.channels] == [1, 2, 3]
    assert plx.channels[0]["name"] == "sig001"
    assert plx.channels[0]["threshold"] == -40
    assert plx.channels[1]["sort_width"] == npoints

    spikes = plx.spikes
    assert len(spikes) == 5
    # blocks are in time order across channels
    assert spikes.channel.tolist() == [1, 2, 1, 1, 2]
    assert np.all(np.diff(spikes.timestamp) > 0)
    assert (spikes.unit == 0).all()
    assert hdr["last_timestamp"] == spikes.timestamp.iloc[-1]
    expected_ts = np.rint(np.array([100, 2500, 5000, 20000, 30000]) / sampling_rate * 24414)
    assert spikes.timestamp.tolist() == expected_ts.tolist()
    assert spikes.time.to_numpy() == pytest.approx(expected_ts / 24414)

    # waveforms are stored in µV
    assert plx.waveforms.shape == (5, npoints)
    assert plx.waveforms.dtype == np.int16
    assert plx.waveforms[0].tolist() == np.rint(channels[0].waveforms[0] * 1e6).tolist()
    assert plx.waveforms[1].tolist() == np.rint(channels[1].waveforms[0] * 1e6).tolist()


def test_write_plx_clips(tmp_path):
    waveforms = np.array([[1.0, -1.0, 1e-6, 0.0]])
    spikes = SpikeWaveforms(waveforms, np.array([10]), sampling_rate, 1)
    path = tmp_path / "clip.plx"
    plexon.write_plx(path, [spikes])
    plx = plexon.read_plx(path)
    assert plx.waveforms[0].tolist() == [32767, -32768, 1, 0]
    assert plx.channels[0]["threshold"] == 0


def test_write_plx_no_spikes(tmp_path):
    spikes = SpikeWaveforms(np.zeros((0, npoints)), np.zeros(0, dtype="i8"), sampling_rate, 16)
    path = tmp_path / "empty.plx"
    plexon.write_plx(path, [spikes])
    plx = plexon.read_plx(path)
    assert plx.header["last_timestamp"] == 0
    assert len(plx.spikes) == 0
    assert plx.waveforms.shape == (0, npoints)


def test_write_plx_errors(tmp_path, channels):
    path = tmp_path / "bad.plx"
    with pytest.raises(ValueError):
        plexon.write_plx(path, [])
    other_rate = SpikeWaveforms(np.zeros((0, npoints)), [], 48828.125, 16, 4)
    with pytest.raises(ValueError):
        plexon.write_plx(path, channels + [other_rate])
    other_length = SpikeWaveforms(np.zeros((0, 32)), [], sampling_rate, 16, 4)
    with pytest.raises(ValueError):
        plexon.write_plx(path, channels + [other_length])


def test_read_plx_bad_magic(tmp_path):
    path = tmp_path / "bad.plx"
    path.write_bytes(b"\x00" * 8000)
    with pytest.raises(ValueError):
        plexon.read_plx(path)
