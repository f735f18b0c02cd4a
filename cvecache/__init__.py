"""cvecache: local mirror of the NVD CVE JSON feeds.

This package keeps a SQLite copy of the yearly and rolling NVD feed
partitions up to date and answers lookups against it.
"""

__version__ = "0.1.0"
