# -*- mode: python -*-
import numpy as np
import pytest

from tdtspikes import offline, plexon
from tdtspikes.spikes import DetectionParams, load_waveforms

from conftest import n_inserted, write_sev


def test_select_event(tank):
    block_dir = tank / "Block-1"
    assert offline.select_event(block_dir) == "RAW1"
    assert offline.select_event(block_dir, "RAW1") == "RAW1"
    with pytest.raises(FileNotFoundError):
        offline.select_event(block_dir, "LFP1")


def test_select_event_multiple(tank):
    block_dir = tank / "Block-1"
    write_sev(block_dir / "Tank1_Block-1_LFP1_ch1.sev", np.zeros(100, dtype="f"), "LFP1", 1)
    with pytest.raises(ValueError, match="LFP1, RAW1"):
        offline.select_event(block_dir)
    assert offline.select_event(block_dir, "LFP1") == "LFP1"


def test_select_event_empty(tmp_path):
    (tmp_path / "Block-1").mkdir()
    with pytest.raises(FileNotFoundError):
        offline.select_event(tmp_path / "Block-1")


def test_offline_spike_detect(tank, tmp_path, recording):
    _, inserted = recording
    plxdir = tmp_path / "plx" / "out"
    plxfile, spikes = offline.offline_spike_detect(tank, "Block-1", plxdir)
    assert plxfile == plxdir / "Tank1_Block-1.plx"
    assert plxfile.exists()
    assert not plxfile.with_name("Tank1_Block-1_spikes.h5").exists()
    assert [s.channel for s in spikes] == [1, 2]
    for s in spikes:
        assert s.nspikes >= n_inserted

    plx = plexon.read_plx(plxfile)
    assert plx.header["n_dsp_channels"] == 2
    assert plx.header["n_points_wave"] == 40
    assert plx.header["comment"] == "Tank1/Block-1 RAW1"
    assert len(plx.spikes) == sum(s.nspikes for s in spikes)
    counts = plx.spikes.channel.value_counts()
    assert counts[1] == spikes[0].nspikes
    assert counts[2] == spikes[1].nspikes
    # troughs of the inserted spikes are well below threshold (about -30 µV)
    assert np.median(plx.waveforms[:, 16]) < -40


def test_offline_spike_detect_options(tank, tmp_path):
    params = DetectionParams(n_samples=32, shadow=20)
    plxfile, spikes = offline.offline_spike_detect(
        tank, "Block-1", tmp_path, event="RAW1", params=params, channels=[2], hdf5=True
    )
    assert [s.channel for s in spikes] == [2]
    assert spikes[0].waveforms.shape[1] == 32
    loaded, attrs = load_waveforms(tmp_path / "Tank1_Block-1_spikes.h5")
    assert attrs["event"] == "RAW1"
    assert attrs["block"] == "Block-1"
    assert loaded[0].channel == 2
    assert loaded[0].times.tolist() == spikes[0].times.tolist()
    plx = plexon.read_plx(plxfile)
    assert plx.header["n_points_pre_thr"] == params.n_before


def test_offline_spike_detect_duplicate_channels(tank, tmp_path):
    outdir = tmp_path / "out"
    with pytest.raises(ValueError):
        offline.offline_spike_detect(tank, "Block-1", outdir, channels=[1, 1], hdf5=True)
    assert not outdir.exists()


def test_offline_spike_detect_dry_run(tank, tmp_path):
    plxfile, spikes = offline.offline_spike_detect(tank, "Block-1", tmp_path / "out", dry_run=True)
    assert not plxfile.exists()
    assert not plxfile.parent.exists()
    assert len(spikes) == 2


def test_script(tank, tmp_path):
    offline.detect_spikes_script(
        [str(tank), "Block-1", "-o", str(tmp_path / "plx"), "-n", "40", "--thresh-factor", "4.5"]
    )
    plx = plexon.read_plx(tmp_path / "plx" / "Tank1_Block-1.plx")
    assert plx.header["n_dsp_channels"] == 2


def test_script_missing_block(tank, tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        offline.detect_spikes_script([str(tank), "Block-9", "-o", str(tmp_path)])
    assert excinfo.value.code != 0


def test_script_bad_channels(tank, tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        offline.detect_spikes_script([str(tank), "Block-1", "-c", "a,b"])
    assert excinfo.value.code != 0
