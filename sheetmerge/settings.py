# sheetmerge/settings.py
"""
Merge configuration and per-file settings.

Settings live beside the data file as plain ``key = value`` lines::

    m_mergefile = D:/lists/supplier.xlsx
    m_mergeif = Article := Article No.
    m_mergeheaders = 2
    Price := Unit price
    Supplier := Supplier

Pairs are written ``sourceHeader := destHeader``, i.e. donor first.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

SETTINGS_SUFFIX = ".settings"
PAIR_SEPARATOR = " := "

HEADER_FLAGS = ("invisible", "immutable", "date")
FILE_FLAGS = ("immutable", "overwrite")


class FieldMapping:
    """Ordered target header -> donor header pairs. An empty donor means cleared."""

    def __init__(self, pairs: Optional[List[Tuple[str, str]]] = None):
        self._pairs: Dict[str, str] = {}
        for target, donor in pairs or []:
            self.set(target, donor)

    def set(self, target_header: str, donor_header: str):
        if not target_header:
            return
        self._pairs[target_header] = donor_header or ""

    def clear(self, target_header: str):
        self.set(target_header, "")

    def donor_for(self, target_header: str) -> str:
        return self._pairs.get(target_header, "")

    def target_for(self, donor_header: str) -> str:
        for target, donor in self.items():
            if donor == donor_header:
                return target
        return ""

    def items(self) -> Iterator[Tuple[str, str]]:
        """Active pairs only (cleared mappings are skipped)."""
        for target, donor in self._pairs.items():
            if donor:
                yield target, donor

    def targets(self) -> List[str]:
        return [t for t, _ in self.items()]

    def __len__(self):
        return sum(1 for _ in self.items())

    def __eq__(self, other):
        if not isinstance(other, FieldMapping):
            return NotImplemented
        return list(self.items()) == list(other.items())

    def __repr__(self):
        return f"FieldMapping({list(self.items())!r})"


@dataclass
class JoinKey:
    target_header: str = ""
    donor_header: str = ""

    @property
    def append_mode(self) -> bool:
        return not self.target_header


class FileSettings:
    def __init__(self):
        self._headers: Dict[str, Dict[str, bool]] = {}
        self._file: Dict[str, bool] = {flag: False for flag in FILE_FLAGS}

    def add_header(self, header: str):
        if header not in self._headers:
            self._headers[header] = {flag: False for flag in HEADER_FLAGS}

    def set_header_flag(self, header: str, flag: str, state: bool = True):
        if flag not in HEADER_FLAGS:
            raise ValueError(f"Unknown header flag: {flag}")
        self.add_header(header)
        self._headers[header][flag] = bool(state)

    def header_flag(self, header: str, flag: str) -> bool:
        return self._headers.get(header, {}).get(flag, False)

    def header_flags(self, header: str) -> List[str]:
        return [f for f, on in self._headers.get(header, {}).items() if on]

    def headers_with(self, flag: str) -> List[str]:
        return [h for h in self._headers if self._headers[h].get(flag)]

    def set_file_flag(self, flag: str, state: bool = True):
        if flag not in FILE_FLAGS:
            raise ValueError(f"Unknown file flag: {flag}")
        self._file[flag] = bool(state)

    def toggle_file_flag(self, flag: str) -> bool:
        self.set_file_flag(flag, not self.file_flag(flag))
        return self.file_flag(flag)

    def file_flag(self, flag: str) -> bool:
        return self._file.get(flag, False)

    def configured_headers(self) -> List[str]:
        return [h for h in self._headers if self.header_flags(h)]


@dataclass
class MergeSettings:
    merge_file: str = ""
    merge_folder: str = ""
    merge_folder_file: str = ""
    dont_import_if_exists_header: str = ""
    merge_if: JoinKey = field(default_factory=JoinKey)
    merge_folder_if: JoinKey = field(default_factory=JoinKey)
    merge_headers: FieldMapping = field(default_factory=FieldMapping)
    merge_headers_folder: FieldMapping = field(default_factory=FieldMapping)
    file_settings: FileSettings = field(default_factory=FileSettings)

    def file_spec(self):
        from sheetmerge.merger import MergeSpec
        return MergeSpec(
            donor_file=self.merge_file,
            mapping=self.merge_headers,
            join_key=self.merge_if,
        )

    def folder_spec(self):
        from sheetmerge.merger import MergeSpec
        return MergeSpec(
            donor_folder=self.merge_folder,
            template_file=self.merge_folder_file,
            mapping=self.merge_headers_folder,
            join_key=self.merge_folder_if,
            dont_import_if_header=self.dont_import_if_exists_header,
        )


def settings_path_for(data_path: str) -> str:
    return data_path + SETTINGS_SUFFIX


def _split_line(line: str) -> Tuple[Optional[str], Optional[str]]:
    if "=" not in line:
        return None, None
    key, value = line.split("=", 1)
    return key.strip(), value.strip()


def _parse_pair(text: str) -> Optional[Tuple[str, str]]:
    if ":=" not in text:
        return None
    source, dest = text.split(":=", 1)
    return source.strip(), dest.strip()


def _format_pair(source: str, dest: str) -> str:
    return f"{source}{PAIR_SEPARATOR}{dest}"


def _read_pair_block(lines: List[str], start: int, count: int) -> Tuple[List[Tuple[str, str]], int]:
    pairs = []
    idx = start
    while idx < len(lines) and len(pairs) < count:
        pair = _parse_pair(lines[idx])
        if pair is None:
            break
        pairs.append(pair)
        idx += 1
    return pairs, idx


def _parse_count(value: str) -> int:
    try:
        return max(0, int(value))
    except ValueError:
        return 0


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_settings(text: str) -> MergeSettings:
    settings = MergeSettings()
    lines = [ln.rstrip("\r") for ln in text.split("\n")]
    idx = 0
    while idx < len(lines):
        key, value = _split_line(lines[idx])
        idx += 1
        if key is None:
            continue

        if key == "m_mergefile":
            settings.merge_file = value
        elif key == "m_mergefolder":
            settings.merge_folder = value
        elif key == "m_mergefolderfile":
            settings.merge_folder_file = value
        elif key == "m_dontimportifexistsheader":
            settings.dont_import_if_exists_header = value
        elif key in ("m_mergeif", "m_mergefolderif"):
            pair = _parse_pair(value)
            join = JoinKey(target_header=pair[1], donor_header=pair[0]) if pair else JoinKey()
            if key == "m_mergeif":
                settings.merge_if = join
            else:
                settings.merge_folder_if = join
        elif key in ("m_mergeheaders", "m_mergeheadersfolder"):
            pairs, idx = _read_pair_block(lines, idx, _parse_count(value))
            mapping = FieldMapping([(dest, source) for source, dest in pairs])
            if key == "m_mergeheaders":
                settings.merge_headers = mapping
            else:
                settings.merge_headers_folder = mapping
        elif key == "m_headersettings":
            pairs, idx = _read_pair_block(lines, idx, _parse_count(value))
            for header, flags in pairs:
                for flag in (f.strip() for f in flags.split(",")):
                    if flag in HEADER_FLAGS:
                        settings.file_settings.set_header_flag(header, flag)
        elif key == "m_fileimmutable":
            settings.file_settings.set_file_flag("immutable", _parse_bool(value))
        elif key == "m_fileoverwrite":
            settings.file_settings.set_file_flag("overwrite", _parse_bool(value))
        else:
            logger.debug("Ignoring unknown settings key: %s", key)
    return settings


def format_settings(settings: MergeSettings) -> str:
    lines = [
        f"m_mergefile = {settings.merge_file}",
        f"m_mergefolder = {settings.merge_folder}",
        f"m_mergefolderfile = {settings.merge_folder_file}",
        f"m_dontimportifexistsheader = {settings.dont_import_if_exists_header}",
    ]
    for key, join in (("m_mergeif", settings.merge_if), ("m_mergefolderif", settings.merge_folder_if)):
        value = _format_pair(join.donor_header, join.target_header) if join.target_header or join.donor_header else ""
        lines.append(f"{key} = {value}")
    for key, mapping in (("m_mergeheaders", settings.merge_headers),
                         ("m_mergeheadersfolder", settings.merge_headers_folder)):
        pairs = list(mapping.items())
        lines.append(f"{key} = {len(pairs)}")
        lines.extend(_format_pair(donor, target) for target, donor in pairs)

    fs = settings.file_settings
    lines.append(f"m_fileimmutable = {int(fs.file_flag('immutable'))}")
    lines.append(f"m_fileoverwrite = {int(fs.file_flag('overwrite'))}")
    headers = fs.configured_headers()
    lines.append(f"m_headersettings = {len(headers)}")
    lines.extend(_format_pair(h, ",".join(fs.header_flags(h))) for h in headers)
    return "\n".join(lines) + "\n"


def load_settings(path: str) -> MergeSettings:
    """Missing settings file -> defaults."""
    if not os.path.exists(path):
        return MergeSettings()
    with open(path, "r", encoding="utf-8") as f:
        return parse_settings(f.read())


def save_settings(path: str, settings: MergeSettings):
    with open(path, "w", encoding="utf-8") as f:
        f.write(format_settings(settings))
