# pdf_pipeline.py
from __future__ import annotations

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple
import hashlib
import io
import re

from field_patterns import (
    extract_amount,
    extract_case_and_year,
    extract_name,
    extract_payment_id,
)

HAVE_PYMUPDF = False
HAVE_PYPDF   = False

try:
    import fitz
    HAVE_PYMUPDF = True
except ImportError:
    pass

try:
    from pypdf import PdfReader
    HAVE_PYPDF = True
except ImportError:
    pass

try:
    import pytesseract
    HAVE_TESS = True
except Exception:
    HAVE_TESS = False

MIN_PAGE_CHARS = 500
OCR_MIN_CHARS = 25
OCR_DPI = 300
TESS_CONFIG = r"--oem 3 --psm 6 -c preserve_interword_spaces=1"
SENTINEL_BASES = ("accepted", "document")

PageText = Tuple[int, Optional[str]]


@dataclass(frozen=True)
class PageRecord:
    name: str
    case_reference: str
    year: str
    amount: str
    payment_id: str

    def as_row(self) -> list[str]:
        return [self.name, self.case_reference, self.year, self.amount, self.payment_id]


def sanitize_page_text(raw: Optional[str]) -> str:
    """Newlines become spaces; keep only ASCII, alphanumeric (Unicode) and whitespace characters."""
    if not raw:
        return ""
    text = raw.replace("\n", " ")
    return "".join(ch for ch in text if ch.isascii() or ch.isalnum() or ch.isspace())


def build_page_record(text: str, page_ordinal: int) -> PageRecord:
    name = extract_name(text, page_ordinal)
    case_reference, year = extract_case_and_year(text, page_ordinal)
    amount = extract_amount(text, page_ordinal)
    payment_id = extract_payment_id(text, page_ordinal)
    return PageRecord(
        name=name,
        case_reference=case_reference,
        year=year,
        amount=amount,
        payment_id=payment_id,
    )


def process_pages(pages: Iterable[PageText], sentinel_base: str = "accepted") -> List[PageRecord]:
    """
    Turn (page_number, raw_text) pairs into PageRecords, in page order.

    raw_text None means the page could not be read; it is skipped. Pages with
    fewer than MIN_PAGE_CHARS sanitized characters are cover/noise pages and
    are skipped too.

    sentinel_base picks the ordinal behind the sentinel of a missing field:
      - "accepted": position among the pages that passed the length gate
      - "document": the page's own position in the PDF (page_number - 1)
    """
    if sentinel_base not in SENTINEL_BASES:
        raise ValueError(f"sentinel_base must be one of {SENTINEL_BASES}, got {sentinel_base!r}")

    records: List[PageRecord] = []
    for page_number, raw in pages:
        if raw is None:
            print(f"[WARN] Page {page_number} skipped: no text could be retrieved")
            continue

        text = sanitize_page_text(raw)
        if len(text) < MIN_PAGE_CHARS:
            print(f"[INFO] Page {page_number} skipped: only {len(text)} characters")
            continue

        print(f"[INFO] Processing page {page_number} ({len(text)} characters)")
        ordinal = len(records) if sentinel_base == "accepted" else page_number - 1
        records.append(build_page_record(text, ordinal))
    return records


def _safe_name(stem: str, maxlen: int = 60) -> str:
    """Filesystem-safe, short name with a hash suffix to avoid collisions."""
    base = re.sub(r"[^A-Za-z0-9._-]+", "_", stem).strip("_")
    if len(base) <= maxlen:
        return base
    h = hashlib.md5(stem.encode("utf-8")).hexdigest()[:8]
    return f"{base[:maxlen-9]}_{h}"


def read_debug_pages_for_pdf(pdf_path: Path, debug_root: Path) -> List[PageText]:
    """
    Page texts previously dumped to <debug_root>/debug_pages/<safe_stem>_pNN.txt,
    ordered by page number. Empty list when there is no dump for this PDF.
    """
    folder = Path(debug_root) / "debug_pages"
    if not folder.exists():
        return []

    stem = _safe_name(Path(pdf_path).stem)
    rx = re.compile(rf"^{re.escape(stem)}_p(\d+)\.txt$", re.I)

    hits = []
    for p in folder.iterdir():
        m = rx.match(p.name)
        if m:
            hits.append((int(m.group(1)), p))
    hits.sort(key=lambda t: t[0])

    out: List[PageText] = []
    for page_number, fp in hits:
        try:
            out.append((page_number, fp.read_text(encoding="utf-8")))
        except (OSError, UnicodeDecodeError) as e:
            print(f"[WARN] Could not read {fp.name}: {e}")
            out.append((page_number, None))
    return out


def _ocr_page_to_text(page, lang: str, dpi: int = OCR_DPI) -> str:
    from PIL import Image, ImageOps
    Image.MAX_IMAGE_PIXELS = None
    pix = page.get_pixmap(matrix=fitz.Matrix(dpi/72, dpi/72), alpha=False)
    img = Image.open(io.BytesIO(pix.tobytes("png")))
    img = ImageOps.exif_transpose(img)
    return pytesseract.image_to_string(img, lang=lang, config=TESS_CONFIG) or ""


def _open_pages(pdf_path: Path):
    """Open the document with the first available backend; any failure here is fatal."""
    if HAVE_PYMUPDF:
        try:
            doc = fitz.open(str(pdf_path))
        except Exception as e:
            raise RuntimeError(f"Could not open PDF {pdf_path}: {e}") from e
        return "pymupdf", doc
    if HAVE_PYPDF:
        try:
            reader = PdfReader(str(pdf_path))
        except Exception as e:
            raise RuntimeError(f"Could not open PDF {pdf_path}: {e}") from e
        return "pypdf", reader.pages
    raise RuntimeError("No PDF backend available. Install with: pip install PyMuPDF (or pypdf)")


def iter_page_texts(
    pdf_path: Path,
    ocr: bool = False,
    ocr_lang: str = "spa",
    dump_root: Optional[Path] = None,
) -> Iterator[PageText]:
    """
    Yield (page_number, raw_text) for every page of the PDF, 1-based, in order.

    A page whose text cannot be extracted is yielded with None. With ocr=True,
    near-empty pages (scans without a text layer) go through Tesseract when it
    is available. With dump_root, every page text is also written to
    <dump_root>/debug_pages for review or later re-runs.
    """
    pdf_path = Path(pdf_path)
    if not pdf_path.exists():
        raise FileNotFoundError(pdf_path)

    backend, pages = _open_pages(pdf_path)
    print(f"[INFO] {pdf_path.name}: {len(pages)} pages ({backend})")

    dbg_pages = None
    if dump_root is not None:
        dbg_pages = Path(dump_root) / "debug_pages"
        dbg_pages.mkdir(parents=True, exist_ok=True)
    safe = _safe_name(pdf_path.stem)

    try:
        for i, page in enumerate(pages, start=1):
            try:
                txt = (page.get_text("text") if backend == "pymupdf" else page.extract_text()) or ""
            except Exception as e:
                print(f"[WARN] Error extracting text from page {i}: {type(e).__name__}: {e}")
                yield i, None
                continue

            if ocr and len(txt.strip()) < OCR_MIN_CHARS:
                if backend == "pymupdf" and HAVE_TESS:
                    try:
                        txt = _ocr_page_to_text(page, ocr_lang) or txt
                    except Exception as e:
                        print(f"[WARN] OCR failed on page {i}: {type(e).__name__}: {e}")
                else:
                    print(f"[WARN] OCR requested for page {i} but PyMuPDF/pytesseract are not available")

            if dbg_pages is not None:
                (dbg_pages / f"{safe}_p{i:02d}.txt").write_text(txt, encoding="utf-8")
            yield i, txt
    finally:
        if backend == "pymupdf":
            pages.close()


def extract_pdf_records(
    pdf_path: Path,
    sentinel_base: str = "accepted",
    ocr: bool = False,
    ocr_lang: str = "spa",
    debug_root: Optional[Path] = None,
    use_debug_pages: bool = False,
) -> List[PageRecord]:
    """
    Run the whole document through the field extractors.
    Raises FileNotFoundError / RuntimeError when the PDF cannot be loaded at all.
    """
    pages: Optional[List[PageText]] = None
    if use_debug_pages and debug_root is not None:
        pages = read_debug_pages_for_pdf(pdf_path, debug_root)
        if pages:
            print(f"[INFO] Using {len(pages)} dumped pages from {Path(debug_root) / 'debug_pages'}")

    if not pages:
        return process_pages(
            iter_page_texts(pdf_path, ocr=ocr, ocr_lang=ocr_lang, dump_root=debug_root),
            sentinel_base=sentinel_base,
        )
    return process_pages(pages, sentinel_base=sentinel_base)


def records_as_dicts(records: Iterable[PageRecord]) -> List[dict]:
    return [asdict(r) for r in records]
