# sheetmerge/merger.py
"""
Merge engine: enrich a target dataset with values from donor files.

Join mode (a join key is configured) updates target records whose key value
matches a donor record; the first matching donor record wins and blank donor
values never erase target values. Append mode (no join key) turns every
eligible donor record into a new target record.

Folder merges remember every donor file they finished in a cache file inside
the donor folder, so unchanged files are not merged twice.
"""
import logging
import os
from collections import namedtuple
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from sheetmerge.dataset import Record, TabularDataset, placeholder_record
from sheetmerge.errors import InvalidJoinConfigurationError
from sheetmerge.file_loader import is_table_file
from sheetmerge.merge_cache import (
    append_merge_cache,
    is_cached,
    last_write_time,
    load_merge_cache,
    normalize_path,
)
from sheetmerge.settings import FieldMapping, JoinKey

logger = logging.getLogger(__name__)

DonorFile = namedtuple("DonorFile", ["path", "timestamp"])


@dataclass
class MergeSpec:
    donor_file: str = ""
    donor_folder: str = ""
    template_file: str = ""
    mapping: FieldMapping = field(default_factory=FieldMapping)
    join_key: JoinKey = field(default_factory=JoinKey)
    dont_import_if_header: str = ""


@dataclass
class MergeReport:
    processed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    updated: int = 0
    added: int = 0

    def summary(self) -> str:
        return (f"{len(self.processed)} file(s) merged, {len(self.skipped)} unchanged, "
                f"{len(self.failed)} failed; {self.updated} record(s) updated, {self.added} added")


def _require_header(dataset: TabularDataset, header: str, role: str):
    if not dataset.has_header(header):
        raise InvalidJoinConfigurationError(
            f"{role} header '{header}' not found in {dataset.source_path or 'dataset'}"
        )


def _active_pairs(target: TabularDataset, mapping: FieldMapping) -> List[Tuple[str, str]]:
    return [(t, d) for t, d in mapping.items()
            if not target.settings.header_flag(t, "immutable")]


def _donor_index(donor: TabularDataset, donor_header: str) -> Dict[str, Record]:
    index: Dict[str, Record] = {}
    for record in donor.records:
        if record.is_placeholder():
            continue
        key = record.get(donor_header)
        if key and key not in index:
            index[key] = record
    return index


def merge_one(target: TabularDataset, donor: TabularDataset, mapping: FieldMapping, join_key: JoinKey) -> int:
    """
    Update target records from the first donor record with an equal key.
    Returns the number of target records that changed.
    """
    if join_key.append_mode:
        raise InvalidJoinConfigurationError("A join merge needs a target join header")
    _require_header(target, join_key.target_header, "Target join")
    _require_header(donor, join_key.donor_header, "Donor join")

    pairs = _active_pairs(target, mapping)
    index = _donor_index(donor, join_key.donor_header)
    updated = 0
    for idx, record in enumerate(target.records):
        if record.is_placeholder():
            continue
        key = record.get(join_key.target_header)
        if not key:
            continue
        match = index.get(key)
        if match is None:
            continue
        work = record.copy()
        work.reset_changed()
        for target_header, donor_header in pairs:
            value = match.get(donor_header)
            if value:
                work.update(target_header, value)
        if work.changed:
            target.replace_record(idx, work)
            updated += 1
    return updated


def _ensure_shape(target: TabularDataset):
    # appended records clone the last record's headers, so there must be one
    if not target.records:
        target.add_record(placeholder_record(target.headers))


def _drop_placeholders(target: TabularDataset):
    real = [r for r in target.records if not r.is_placeholder()]
    if real:
        target.records = real


def _append_records(target: TabularDataset, donor: TabularDataset, mapping: FieldMapping,
                    dedupe_header: str, dedupe: Set[str]) -> int:
    pairs = _active_pairs(target, mapping)
    donor_dedupe_header = mapping.donor_for(dedupe_header) or dedupe_header
    shape = target.records[-1]
    added = 0
    for donor_record in donor.records:
        if donor_record.is_placeholder():
            continue
        key = donor_record.get(donor_dedupe_header) if dedupe_header else ""
        if key and key in dedupe:
            continue
        new_record = shape.blank_copy()
        filled = False
        for target_header, donor_header in pairs:
            value = donor_record.get(donor_header)
            if value and new_record.update(target_header, value):
                filled = True
        if not filled:
            continue
        target.add_record(new_record)
        added += 1
        if dedupe_header:
            value = new_record.get(dedupe_header) or key
            if value:
                dedupe.add(value)
    return added


def scan_folder(folder: str) -> List[DonorFile]:
    """Every .csv/.xlsx file directly in folder, sorted by name."""
    if not folder or not os.path.isdir(folder):
        return []
    donors = []
    for entry in sorted(os.listdir(folder)):
        fpath = os.path.join(folder, entry)
        if not os.path.isfile(fpath) or not is_table_file(entry):
            continue
        donors.append(DonorFile(normalize_path(fpath), last_write_time(fpath)))
    return donors


def _split_cached(folder: str, ignore_cache: bool) -> Tuple[List[DonorFile], List[DonorFile]]:
    """(pending, unchanged) donor files of folder."""
    donors = scan_folder(folder)
    if ignore_cache:
        return donors, []
    cache = load_merge_cache(folder)
    pending, unchanged = [], []
    for donor in donors:
        if is_cached(cache, donor.path, donor.timestamp):
            unchanged.append(donor)
        else:
            pending.append(donor)
    return pending, unchanged


def resolve_folder(folder: str, ignore_cache: bool = False) -> List[DonorFile]:
    """Donor files of folder that changed since they were last merged."""
    return _split_cached(folder, ignore_cache)[0]


def merge_file(target: TabularDataset, donor_path: str, mapping: FieldMapping,
               join_key: JoinKey) -> MergeReport:
    report = MergeReport()
    if not target.headers:
        logger.warning("Target has no header layout, nothing to merge into")
        return report
    donor = TabularDataset()
    ok, msg = donor.load(donor_path)
    if not ok:
        logger.warning("Skipping donor %s: %s", donor_path, msg)
        report.failed.append(donor_path)
        return report
    try:
        if join_key.append_mode:
            _ensure_shape(target)
            report.added = _append_records(target, donor, mapping, "", set())
            _drop_placeholders(target)
        else:
            report.updated = merge_one(target, donor, mapping, join_key)
    finally:
        donor.unload()
    report.processed.append(donor_path)
    logger.info("Merged %s: %s", donor_path, report.summary())
    return report


def merge_folder(target: TabularDataset, folder: str, mapping: FieldMapping, join_key: JoinKey,
                 dont_import_if_header: str = "", ignore_cache: bool = False) -> MergeReport:
    """
    Merge every changed donor file of folder into target, in name order.
    Each finished donor is appended to the folder cache right away; donors
    that fail to load are skipped and retried on the next run.
    """
    if not join_key.append_mode:
        _require_header(target, join_key.target_header, "Target join")

    report = MergeReport()
    if not target.headers:
        logger.warning("Target has no header layout, nothing to merge into")
        return report
    _ensure_shape(target)
    dedupe: Set[str] = set()
    if dont_import_if_header:
        dedupe = {r.get(dont_import_if_header) for r in target.records if not r.is_placeholder()}
        dedupe.discard("")

    pending, unchanged = _split_cached(folder, ignore_cache)
    report.skipped.extend(d.path for d in unchanged)
    for donor_file in pending:
        donor = TabularDataset()
        ok, msg = donor.load(donor_file.path)
        if not ok:
            logger.warning("Skipping donor %s: %s", donor_file.path, msg)
            report.failed.append(donor_file.path)
            continue
        try:
            if join_key.append_mode:
                report.added += _append_records(target, donor, mapping, dont_import_if_header, dedupe)
            else:
                report.updated += merge_one(target, donor, mapping, join_key)
        except InvalidJoinConfigurationError as e:
            logger.warning("Skipping donor %s: %s", donor_file.path, e)
            report.failed.append(donor_file.path)
            continue
        finally:
            donor.unload()

        append_merge_cache(folder, donor_file.path, donor_file.timestamp)
        report.processed.append(donor_file.path)

    _drop_placeholders(target)
    logger.info("Folder merge %s: %s", folder, report.summary())
    return report


def run_merge(target: TabularDataset, spec: MergeSpec, ignore_cache: bool = False) -> MergeReport:
    if spec.donor_folder:
        return merge_folder(target, spec.donor_folder, spec.mapping, spec.join_key,
                            dont_import_if_header=spec.dont_import_if_header,
                            ignore_cache=ignore_cache)
    if spec.donor_file:
        return merge_file(target, spec.donor_file, spec.mapping, spec.join_key)
    logger.warning("Merge requested without a donor file or folder")
    return MergeReport()


def template_headers(path: str) -> List[str]:
    """Header names of a folder template, the vocabulary for folder field mappings."""
    template = TabularDataset()
    ok, _ = template.load(path)
    if not ok:
        return []
    names = template.header_names()
    template.unload()
    return names


def describe_mapping(mapping: FieldMapping, join_key: Optional[JoinKey] = None) -> List[str]:
    lines = []
    if join_key is not None:
        if join_key.append_mode:
            lines.append("join: (none, append mode)")
        else:
            lines.append(f"join: {join_key.donor_header} := {join_key.target_header}")
    for target_header, donor_header in mapping.items():
        lines.append(f"{donor_header} := {target_header}")
    return lines
