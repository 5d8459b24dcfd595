# -*- mode: python -*-
"""Offline spike detection from TDT streamed data

1. Filters each channel with a zero-phase (forward-backward) Butterworth
   bandpass filter to isolate the spike band.
2. Sets a robust detection threshold at -4 * median(|x|) / 0.6745 (eq. 3.1 in
   Quiroga, Nadasdy, and Ben-Shaul, 2004).
3. Aligns spikes to the largest negative peak following each threshold
   crossing, ignoring crossings within the shadow period of a previous spike.
4. Writes spike waveforms and timestamps to a PLX file named
   <tank>_<block>.plx.

"""
import logging
from collections.abc import Sequence
from pathlib import Path

from tdtspikes import sev
from tdtspikes.plexon import plx_filename, write_plx
from tdtspikes.signal import bandpass
from tdtspikes.spikes import (
    DetectionParams,
    SpikeWaveforms,
    detect_spikes,
    save_waveforms,
)

log = logging.getLogger(__name__)


def select_event(block_dir: Path, event: str | None = None) -> str:
    """Choose the streamed event to process.

    If event is None, the block must contain exactly one event. Otherwise the
    requested event must be present.
    """
    names = sev.event_names(block_dir)
    log.info("- found %d SEV event(s) in %s", len(names), block_dir)
    if not names:
        raise FileNotFoundError(f"no SEV events found in {block_dir}")
    if event is None:
        if len(names) > 1:
            raise ValueError(
                f"multiple SEV events in {block_dir}; choose one of: {', '.join(names)}"
            )
        return names[0]
    if event not in names:
        raise FileNotFoundError(
            f"SEV event '{event}' not in {block_dir} (found: {', '.join(names)})"
        )
    return event


def offline_spike_detect(
    tank: str | Path,
    block: str,
    plxdir: str | Path,
    event: str | None = None,
    params: DetectionParams | None = None,
    channels: Sequence[int] | None = None,
    scale: float = 1e6,
    filter_args: dict | None = None,
    hdf5: bool = False,
    dry_run: bool = False,
) -> tuple[Path, list[SpikeWaveforms]]:
    """Detect spikes in a block of streamed data and write them to a PLX file

    tank: path of the tank directory
    block: name of the block (a subdirectory of tank)
    plxdir: directory for output files (created if needed)
    event: name of the SEV event to process. Required if the block has more than one.
    params: spike detection parameters (see DetectionParams)
    channels: the (1-based) channels to process (default all)
    scale: factor applied to waveforms before they are stored as 16-bit
           integers (default converts V to µV)
    filter_args: keyword arguments for tdtspikes.signal.spike_filter
    hdf5: if True, also store waveforms in an hdf5 file
    dry_run: if True, do everything except write the output files

    Returns (path of the PLX file, list of spikes for each channel)

    """
    from tdtspikes.core import __version__

    if params is None:
        params = DetectionParams()
    tank = Path(tank)
    block_dir = tank / block
    event = select_event(block_dir, event)
    log.info("- using SEV event '%s'", event)

    log.info("- retrieving data")
    stream = sev.read_stream(block_dir, event, channels)
    log.info(
        "  - %d channels, %d samples (%.1f s) at %.4f Hz",
        stream.nchannels,
        stream.samples.shape[0],
        stream.duration,
        stream.sampling_rate,
    )

    log.info("- filtering %d channels", stream.nchannels)
    filtered = bandpass(stream, **(filter_args or {}))
    del stream

    log.info(
        "- finding spikes: %d samples (%d before peak), shadow %d, threshold %.1f x noise",
        params.n_samples,
        params.n_before,
        params.shadow,
        params.thresh_factor,
    )
    spikes = detect_spikes(filtered, params)

    plxfile = Path(plxdir) / plx_filename(tank, block)
    if dry_run:
        log.info("- dry run; not writing %s", plxfile)
        return plxfile, spikes
    plxfile.parent.mkdir(parents=True, exist_ok=True)
    log.info("- writing %s", plxfile)
    for s in spikes:
        log.debug("  - channel %3d: %7d spikes", s.channel, s.nspikes)
    write_plx(
        plxfile,
        spikes,
        scale=scale,
        comment=f"{tank.name}/{block} {event}",
    )
    if hdf5:
        h5file = plxfile.with_name(f"{plxfile.stem}_spikes.h5")
        log.info("- writing %s", h5file)
        save_waveforms(
            h5file,
            spikes,
            tank=tank.name,
            block=block,
            event=event,
            processed_by=f"tdtspikes {__version__}",
        )
    log.info(
        "- a total of %d spikes were detected on %d channels",
        sum(s.nspikes for s in spikes),
        len(spikes),
    )
    return plxfile, spikes


def detect_spikes_script(argv=None):
    import argparse

    from tdtspikes import __version__
    from tdtspikes.util import channel_list, setup_log

    p = argparse.ArgumentParser(
        description="detect spikes in TDT streamed (SEV) data and write them to a PLX file"
    )
    p.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    p.add_argument("--debug", help="show verbose log messages", action="store_true")
    p.add_argument(
        "--dry-run",
        help="do everything except write the output files",
        action="store_true",
    )
    p.add_argument(
        "--output",
        "-o",
        type=Path,
        default=".",
        help="directory to output the plx file (default current directory)",
    )
    p.add_argument(
        "--event",
        "-e",
        help="name of the SEV event to process. Required if the block has more than one",
    )
    p.add_argument(
        "--channels",
        "-c",
        type=channel_list,
        help="only process the specified channels (as comma-separated list)",
    )
    p.add_argument(
        "--nsamps",
        "-n",
        type=int,
        default=40,
        help="number of samples to extract for each spike (default %(default)d)",
    )
    p.add_argument(
        "--shadow",
        type=int,
        help="number of samples to ignore following a spike (default nsamps / 1.25)",
    )
    p.add_argument(
        "--thresh-factor",
        type=float,
        default=4.0,
        help="threshold, in units of the robust noise estimate (default %(default).1f)",
    )
    p.add_argument(
        "--scale",
        type=float,
        default=1e6,
        help="factor to scale waveforms before storing as integers (default %(default)g, V to µV)",
    )
    p.add_argument(
        "--hdf5",
        action="store_true",
        help="also save waveforms and spike times to an hdf5 file",
    )
    p.add_argument("tank", type=Path, help="path of the tank directory")
    p.add_argument("block", help="name of the block")
    args = p.parse_args(argv)
    setup_log(args.debug)
    log.info("- %s version %s", p.prog, __version__)

    try:
        params = DetectionParams(args.nsamps, args.shadow, args.thresh_factor)
        offline_spike_detect(
            args.tank,
            args.block,
            args.output,
            event=args.event,
            params=params,
            channels=args.channels,
            scale=args.scale,
            hdf5=args.hdf5,
            dry_run=args.dry_run,
        )
    except (ValueError, FileNotFoundError) as err:
        log.error("  - error: %s", err)
        p.exit(-1)


if __name__ == "__main__":
    detect_spikes_script()
