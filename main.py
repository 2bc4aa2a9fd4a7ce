#!/usr/bin/env python3
"""
main.py - console front end for sheetmerge
Load a goods-receiving sheet, enrich it from a donor file or a donor folder,
and save it back.
"""

import logging
import os
import sys
from typing import List, Optional

from sheetmerge.data_preview import preview_records
from sheetmerge.dataset import TabularDataset
from sheetmerge.merger import describe_mapping, resolve_folder, run_merge, template_headers
from sheetmerge.settings import (
    JoinKey,
    MergeSettings,
    load_settings,
    save_settings,
    settings_path_for,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# -------------------------
# Utilities
# -------------------------
def ask(prompt: str) -> str:
    return input(prompt).strip()


def load_target(path: str) -> Optional[TabularDataset]:
    dataset = TabularDataset()
    ok, err = dataset.load(path)
    if not ok:
        print("Load error:", err)
        return None
    print(f"Loaded {os.path.basename(path)} ({len(dataset)} records, {len(dataset.headers)} headers)")
    return dataset


def current_settings(dataset: Optional[TabularDataset]) -> MergeSettings:
    if dataset is None or not dataset.source_path:
        return MergeSettings()
    settings = load_settings(settings_path_for(dataset.source_path))
    dataset.settings = settings.file_settings
    return settings


def store_settings(dataset: TabularDataset, settings: MergeSettings):
    path = settings_path_for(dataset.source_path)
    save_settings(path, settings)
    print("Settings saved to:", path)


def print_settings(settings: MergeSettings):
    print("\n===== Merge file =====")
    print("file:", settings.merge_file or "(none)")
    for line in describe_mapping(settings.merge_headers, settings.merge_if):
        print(" ", line)
    print("\n===== Merge folder =====")
    print("folder:", settings.merge_folder or "(none)")
    print("template:", settings.merge_folder_file or "(none)")
    print("don't import if exists:", settings.dont_import_if_exists_header or "(none)")
    for line in describe_mapping(settings.merge_headers_folder, settings.merge_folder_if):
        print(" ", line)


def choose_header(headers: List[str], prompt: str) -> str:
    """Header by number or name; empty input clears."""
    for i, h in enumerate(headers, start=1):
        print(f"  {i}. {h}")
    choice = ask(prompt)
    if choice.isdigit() and 1 <= int(choice) <= len(headers):
        return headers[int(choice) - 1]
    return choice


def configure_mapping(dataset: TabularDataset, settings: MergeSettings):
    mode = ask("Configure (1) merge file or (2) merge folder? ")
    if mode == "1":
        donor = ask(f"Donor file [{settings.merge_file}]: ") or settings.merge_file
        settings.merge_file = donor
        donor_headers = template_headers(donor)
        mapping = settings.merge_headers
    elif mode == "2":
        settings.merge_folder = ask(f"Donor folder [{settings.merge_folder}]: ") or settings.merge_folder
        template = ask(f"Folder template file [{settings.merge_folder_file}]: ") or settings.merge_folder_file
        settings.merge_folder_file = template
        donor_headers = template_headers(template)
        mapping = settings.merge_headers_folder
    else:
        print("Invalid choice.")
        return

    if not donor_headers:
        print("Donor headers could not be read; enter names by hand.")

    target_headers = dataset.header_names()
    print("\nJoin key: target header (empty for append mode)")
    join_target = choose_header(target_headers, "Target join header: ")
    join_donor = choose_header(donor_headers, "Donor join header: ") if join_target else ""
    new_join = JoinKey(target_header=join_target, donor_header=join_donor)
    if mode == "1":
        settings.merge_if = new_join
    else:
        settings.merge_folder_if = new_join
        if not join_target:
            settings.dont_import_if_exists_header = choose_header(
                target_headers, "Don't import if this header's value exists (empty for none): ")

    print("\nField mapping: pick a target header, then its donor header (empty target to finish)")
    while True:
        target = choose_header(target_headers, "Target header: ")
        if not target:
            break
        donor = choose_header(donor_headers, f"Donor header for '{target}' (empty clears): ")
        mapping.set(target, donor)

    store_settings(dataset, settings)


def do_merge(dataset: TabularDataset, settings: MergeSettings, folder: bool, ignore_cache: bool = False):
    spec = settings.folder_spec() if folder else settings.file_spec()
    if folder:
        if not spec.donor_folder:
            print("No merge folder configured.")
            return
        pending = resolve_folder(spec.donor_folder, ignore_cache=ignore_cache)
        print(f"{len(pending)} donor file(s) to merge from {spec.donor_folder}")
    elif not spec.donor_file:
        print("No merge file configured.")
        return
    try:
        report = run_merge(dataset, spec, ignore_cache=ignore_cache)
    except Exception as e:
        print("Merge error:", e)
        return
    print(report.summary())
    for failed in report.failed:
        print(" - failed:", failed)


def do_save(dataset: TabularDataset, target: str = "", template: str = "", indices: Optional[List[int]] = None):
    to_save = dataset.extract(indices) if indices else dataset
    ok, err = to_save.save(target or None, template_path=template or None)
    if ok:
        print("Saved to:", target or dataset.source_path)
    else:
        print("Save error:", err)


def parse_indices(text: str) -> List[int]:
    indices = []
    for part in text.replace(",", " ").split():
        if part.isdigit():
            indices.append(int(part))
    return indices


# -------------------------
# Interactive menu loop
# -------------------------
def interactive_menu(dataset: Optional[TabularDataset] = None):
    settings = current_settings(dataset)

    while True:
        print("\n-------- MENU --------")
        print("1. Load File")
        print("2. Preview Records")
        print("3. Show Merge Settings")
        print("4. Configure Merge (join key + field mapping)")
        print("5. Merge From File")
        print("6. Merge From Folder")
        print("7. Merge From Folder (ignore cache)")
        print("8. Save")
        print("9. Save As / Export")
        print("0. Exit")

        choice = ask("Enter your choice: ")

        if choice == "0":
            print("Exiting. Goodbye.")
            break

        if choice == "1":
            path = ask("Enter file path (.xlsx / .csv): ")
            loaded = load_target(path)
            if loaded is not None:
                dataset = loaded
                settings = current_settings(dataset)
            continue

        if choice not in ("2", "3", "4", "5", "6", "7", "8", "9"):
            print("Invalid choice. Try again.")
            continue

        if dataset is None or not dataset.ready:
            print("No file loaded.")
            continue

        if choice == "2":
            print(preview_records(dataset))
        elif choice == "3":
            print_settings(settings)
        elif choice == "4":
            configure_mapping(dataset, settings)
        elif choice == "5":
            do_merge(dataset, settings, folder=False)
        elif choice == "6":
            do_merge(dataset, settings, folder=True)
        elif choice == "7":
            do_merge(dataset, settings, folder=True, ignore_cache=True)
        elif choice == "8":
            do_save(dataset)
        elif choice == "9":
            target = ask("Save as (path): ")
            if not target:
                print("No path provided.")
                continue
            template = ask("Template file (empty for none): ")
            indices = parse_indices(ask("Record numbers to export (empty for all): "))
            do_save(dataset, target, template, indices)


# -------------------------
# main()
# -------------------------
def main(argv: Optional[List[str]] = None):
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    argv = sys.argv[1:] if argv is None else argv
    dataset = None
    if argv:
        dataset = load_target(argv[0])
    interactive_menu(dataset)


if __name__ == "__main__":
    main()
