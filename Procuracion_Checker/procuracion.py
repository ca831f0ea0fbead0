#!/usr/bin/env python3
from __future__ import annotations

import argparse
import shutil
import sys
import zipfile
from pathlib import Path

from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException

from pdf_pipeline import SENTINEL_BASES, extract_pdf_records
from rend_workbook import records_to_frame, save_rend_workbook


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="pdf-procuracion")
    ap.add_argument("pdf", help="PDF with one payment order per page")
    ap.add_argument("--out", required=True, help="Output workbook (.xlsx); an existing REND sheet in it is kept")
    ap.add_argument("--csv", default=None, help="Also write the extracted rows to this CSV file")
    ap.add_argument("--sentinel-base", default="accepted", choices=list(SENTINEL_BASES), help="Number missing fields by position among processed pages (accepted) or by PDF page (document)")
    ap.add_argument("--ocr", action="store_true", help="OCR pages without a text layer (needs tesseract)")
    ap.add_argument("--ocr-lang", default="spa", help="Tesseract language for --ocr (default: spa)")
    ap.add_argument("--debug-dir", default=None, help="Folder for per-page text dumps (debug_pages/)")
    ap.add_argument("--use-debug-pages", action="store_true", help="Read page text from --debug-dir dumps instead of re-extracting")
    ap.add_argument("--keep-debug", action="store_true", help="Keep the debug_pages/ dumps after the run. Default: deleted.")
    return ap.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    pdf_path = Path(args.pdf)
    debug_root = Path(args.debug_dir) if args.debug_dir else None
    print(f"[INFO] Processing: {pdf_path}")

    try:
        records = extract_pdf_records(
            pdf_path,
            sentinel_base=args.sentinel_base,
            ocr=args.ocr,
            ocr_lang=args.ocr_lang,
            debug_root=debug_root,
            use_debug_pages=args.use_debug_pages,
        )
    except (FileNotFoundError, RuntimeError) as e:
        print(f"[ERR] Could not process the PDF: {e}")
        return 1

    print(f"[INFO] Records extracted: {len(records)}")
    if not records:
        print("[ERR] No records found in the PDF.")
        return 1

    try:
        save_rend_workbook(records, args.out)
        if args.csv:
            records_to_frame(records).to_csv(args.csv, index=False)
            print(f"Wrote: {args.csv}")
    except (OSError, ValueError, KeyError, zipfile.BadZipFile,
            InvalidFileException, IllegalCharacterError) as e:
        print(f"[ERR] Could not save the workbook: {e}")
        return 1

    if debug_root is not None and not args.keep_debug and not args.use_debug_pages:
        shutil.rmtree(debug_root / "debug_pages", ignore_errors=True)

    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
