# -*- mode: python -*-
"""
Offline spike detection for TDT streamed recordings.

signal:         data streams and spike-band filtering
spikes:         thresholds, spike detection and waveform extraction
sev:            reader for TDT SEV stream files
plexon:         reader and writer for Plexon PLX files
offline:        the detection pipeline and its command-line script
"""
from tdtspikes.core import __version__
