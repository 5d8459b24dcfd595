# -*- coding: utf-8 -*-
# -*- mode: python -*-
import sys
if sys.hexversion < 0x030A0000:
    raise RuntimeError("Python 3.10 or higher required")

from setuptools import setup, find_packages

VERSION = '2026.10.18'

cls_txt = """
Development Status :: 4 - Beta
Intended Audience :: Science/Research
License :: OSI Approved :: GNU General Public License (GPL)
Programming Language :: Python
Programming Language :: Python :: 3
Topic :: Scientific/Engineering
Operating System :: Unix
Operating System :: POSIX :: Linux
Operating System :: MacOS :: MacOS X
Natural Language :: English
"""

short_desc = "Offline spike detection for TDT streamed recordings, with PLX export"

setup(
    name = 'tdt-spikes',
    version=VERSION,
    packages= find_packages(exclude=["*test*"]),

    install_requires = ["numpy>=1.22", "scipy>=1.6", "quickspikes>=2.0",
                        "h5py>=3.0", "pandas>=1.3"],
    extras_require = {"test": ["pytest>=7.0"]},
    entry_points = {
        "console_scripts": [
            "offline-spike-detect = tdtspikes.offline:detect_spikes_script",
        ],
    },

    description=short_desc,
    long_description=short_desc,
    classifiers=[x for x in cls_txt.split("\n") if x],

    author = "CD Meliza",
    author_email = "dan AT the domain 'meliza.org'",
    maintainer = "CD Meliza",
    maintainer_email = "dan AT the domain 'meliza.org'",
)


# Variables:
# End:
