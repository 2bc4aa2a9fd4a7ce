# sheetmerge/merge_cache.py
import datetime
import logging
import os
from typing import Dict

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = ".merge_cache"
CACHE_SEPARATOR = " : "
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def cache_file_for(folder: str) -> str:
    return os.path.join(folder, CACHE_FILE_NAME)


def last_write_time(path: str) -> str:
    """Local last-write time, second resolution."""
    mtime = os.path.getmtime(path)
    return datetime.datetime.fromtimestamp(mtime).strftime(TIMESTAMP_FORMAT)


def load_merge_cache(folder: str) -> Dict[str, str]:
    """
    Read the folder's cache file: one "<path> : <timestamp>" line per merged
    donor. Later lines win for repeated paths.
    """
    cache: Dict[str, str] = {}
    path = cache_file_for(folder)
    if not os.path.exists(path):
        return cache
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.rstrip("\r\n")
            donor, sep, stamp = line.rpartition(CACHE_SEPARATOR)
            if not sep or not donor:
                continue
            cache[normalize_path(donor.strip())] = stamp.strip()
    return cache


def append_merge_cache(folder: str, donor_path: str, timestamp: str):
    with open(cache_file_for(folder), "a", encoding="utf-8") as f:
        f.write(f"{normalize_path(donor_path)}{CACHE_SEPARATOR}{timestamp}\n")
    logger.debug("Cached %s @ %s", donor_path, timestamp)


def is_cached(cache: Dict[str, str], donor_path: str, timestamp: str) -> bool:
    return cache.get(normalize_path(donor_path)) == timestamp


def clear_merge_cache(folder: str):
    path = cache_file_for(folder)
    if os.path.exists(path):
        os.remove(path)
