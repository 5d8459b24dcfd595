# -*- coding: utf-8 -*-
# -*- mode: python -*-
""" Shared code for all scripts and modules """
__version__ = "2026.10.18"
