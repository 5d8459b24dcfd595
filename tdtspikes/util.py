# -*- mode: python -*-
"""Utility functions for scripts and modules"""

import logging


def setup_log(debug=False):
    logging.basicConfig(
        format="%(message)s", level=logging.DEBUG if debug else logging.INFO
    )


def channel_list(arg: str) -> list[int]:
    """argparse type for a comma-separated list of channels, e.g. '1,2,5'"""
    try:
        channels = [int(item) for item in arg.split(",")]
    except ValueError as err:
        raise ValueError(f"{arg} is not a comma-separated list of channels") from err
    if any(c < 1 for c in channels):
        raise ValueError("channel numbers start at 1")
    return channels
