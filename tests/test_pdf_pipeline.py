from pathlib import Path

import pytest

from pdf_pipeline import (
    MIN_PAGE_CHARS,
    PageRecord,
    build_page_record,
    extract_pdf_records,
    process_pages,
    read_debug_pages_for_pdf,
    sanitize_page_text,
)

FILLER = " relleno" * 70

FULL_PAGE = (
    'Orden de pago en autos "Juan Perez c/ Fisco" Expediente 1234/2020, '
    "por la suma de pesos ( $1,234.56) Cheque Nro. 12345678"
) + FILLER

NO_CASE_PAGE = (
    'Orden de pago en autos "Ana Gomez" sin referencia, '
    "por la suma de pesos ($45.-) ITB Nº: 555666"
) + FILLER

EMPTY_PAGE = "hoja sin datos utiles" + FILLER


def test_sanitize_replaces_newlines_and_drops_symbols():
    assert sanitize_page_text("linea uno\nlinea dos") == "linea uno linea dos"
    assert sanitize_page_text("“Pérez”") == "Pérez"
    assert sanitize_page_text("ñandú") == "ñandú"


def test_sanitize_ordinal_sign_is_kept_but_degree_sign_is_not():
    # U+00BA is a letter, U+00B0 is a symbol
    assert sanitize_page_text("ITB Nº: 1") == "ITB Nº: 1"
    assert sanitize_page_text("Cheque N° 1") == "Cheque N 1"


def test_sanitize_handles_empty_input():
    assert sanitize_page_text("") == ""
    assert sanitize_page_text(None) == ""


def test_sanitize_is_idempotent():
    raw = "Línea\n“uno” — N° 5 ½ ☺\tfin\r\nÑ"
    once = sanitize_page_text(raw)
    assert sanitize_page_text(once) == once


def test_build_page_record_full_page():
    rec = build_page_record(sanitize_page_text(FULL_PAGE), 0)
    assert rec == PageRecord(
        name="Juan Perez c/ Fisco",
        case_reference="EXP-1234",
        year="2020",
        amount="1234.56",
        payment_id="CH 12345678",
    )


def test_build_page_record_misses_use_sentinel():
    rec = build_page_record(sanitize_page_text(EMPTY_PAGE), 3)
    assert rec.as_row() == ["4", "4", " ", "4", "4"]


def test_page_record_is_immutable():
    rec = build_page_record(sanitize_page_text(FULL_PAGE), 0)
    with pytest.raises(AttributeError):
        rec.name = "otro"


def test_length_gate_boundary(capsys):
    pages = [(1, "x" * (MIN_PAGE_CHARS - 1)), (2, "x" * MIN_PAGE_CHARS)]
    records = process_pages(pages)
    assert len(records) == 1
    # the accepted page is the first accepted one
    assert records[0].name == "1"
    out = capsys.readouterr().out
    assert f"[INFO] Page 1 skipped: only {MIN_PAGE_CHARS - 1} characters" in out


def test_newlines_count_as_one_character_each():
    raw = "a\n" * (MIN_PAGE_CHARS // 2)
    assert len(process_pages([(1, raw)])) == 1


def test_sentinel_follows_accepted_page_order():
    pages = [(1, FULL_PAGE), (2, NO_CASE_PAGE), (3, FULL_PAGE)]
    records = process_pages(pages)
    assert len(records) == 3
    assert records[1].case_reference == "2"
    assert records[1].year == " "
    assert records[1].name == "Ana Gomez"
    assert records[1].amount == "45"
    assert records[1].payment_id == "ITB 555666"


def test_every_field_is_populated():
    pages = [(1, FULL_PAGE), (2, NO_CASE_PAGE), (3, EMPTY_PAGE)]
    for rec in process_pages(pages):
        assert rec.year.strip() or rec.year == " "
        for value in (rec.name, rec.case_reference, rec.amount, rec.payment_id):
            assert value != ""


def test_skipped_pages_do_not_advance_accepted_ordinal():
    pages = [(1, "portada"), (2, NO_CASE_PAGE), (3, FULL_PAGE)]
    records = process_pages(pages)
    assert [r.case_reference for r in records] == ["1", "EXP-1234"]


def test_document_sentinel_base_uses_pdf_page_number():
    pages = [(1, "portada"), (2, NO_CASE_PAGE), (3, FULL_PAGE)]
    records = process_pages(pages, sentinel_base="document")
    assert records[0].case_reference == "2"


def test_unreadable_page_is_skipped_and_logged(capsys):
    records = process_pages([(1, None), (2, FULL_PAGE)])
    assert len(records) == 1
    assert records[0].case_reference == "EXP-1234"
    assert "[WARN] Page 1 skipped" in capsys.readouterr().out


def test_unknown_sentinel_base_is_rejected():
    with pytest.raises(ValueError):
        process_pages([], sentinel_base="original")


def _dump_pages(root: Path, stem: str, texts: list[str]) -> None:
    folder = root / "debug_pages"
    folder.mkdir(parents=True, exist_ok=True)
    for i, text in enumerate(texts, start=1):
        (folder / f"{stem}_p{i:02d}.txt").write_text(text, encoding="utf-8")


def test_read_debug_pages_orders_by_page_number(tmp_path):
    _dump_pages(tmp_path, "orden_pago", ["uno", "dos"])
    (tmp_path / "debug_pages" / "orden_pago_p10.txt").write_text("diez", encoding="utf-8")
    (tmp_path / "debug_pages" / "otro_p01.txt").write_text("ajeno", encoding="utf-8")

    pages = read_debug_pages_for_pdf(tmp_path / "orden_pago.pdf", tmp_path)
    assert pages == [(1, "uno"), (2, "dos"), (10, "diez")]


def test_read_debug_pages_without_dump(tmp_path):
    assert read_debug_pages_for_pdf(tmp_path / "orden_pago.pdf", tmp_path) == []


def test_extract_pdf_records_from_debug_pages(tmp_path):
    _dump_pages(tmp_path, "orden_pago", ["portada", NO_CASE_PAGE, FULL_PAGE])
    records = extract_pdf_records(
        tmp_path / "orden_pago.pdf", debug_root=tmp_path, use_debug_pages=True
    )
    assert [r.case_reference for r in records] == ["1", "EXP-1234"]


def test_missing_pdf_is_fatal(tmp_path):
    with pytest.raises(FileNotFoundError):
        extract_pdf_records(tmp_path / "no_existe.pdf")


def _make_pdf(path: Path, pages: list[str]) -> None:
    fitz = pytest.importorskip("fitz")
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        # short lines so nothing falls outside the page box
        words = text.split(" ")
        lines = [" ".join(words[i:i + 10]) for i in range(0, len(words), 10)]
        page.insert_text((36, 48), "\n".join(lines), fontsize=8)
    doc.save(str(path))
    doc.close()


def test_extract_pdf_records_from_real_pdf(tmp_path):
    pdf = tmp_path / "orden_pago.pdf"
    _make_pdf(pdf, ["portada", FULL_PAGE, NO_CASE_PAGE.replace("Nº", "No")])

    records = extract_pdf_records(pdf, debug_root=tmp_path)
    assert len(records) == 2
    first, second = records
    assert first.name == "Juan Perez c/ Fisco"
    assert first.case_reference == "EXP-1234"
    assert first.year == "2020"
    assert first.amount == "1234.56"
    assert first.payment_id == "CH 12345678"
    assert second.case_reference == "2"
    assert second.payment_id == "2"

    dumps = sorted(p.name for p in (tmp_path / "debug_pages").iterdir())
    assert dumps == ["orden_pago_p01.txt", "orden_pago_p02.txt", "orden_pago_p03.txt"]


def test_corrupt_pdf_is_fatal(tmp_path):
    pytest.importorskip("fitz")
    pdf = tmp_path / "roto.pdf"
    pdf.write_bytes(b"esto no es un pdf")
    with pytest.raises(RuntimeError):
        extract_pdf_records(pdf)


class _FakeDoc:
    def __init__(self, texts):
        self.texts = texts
        self.closed = False

    def __len__(self):
        return len(self.texts)

    def __iter__(self):
        for text in self.texts:
            yield _FakePage(text)

    def close(self):
        self.closed = True


class _FakePage:
    def __init__(self, text):
        self.text = text

    def get_text(self, kind):
        return self.text


def _fake_pdf(tmp_path, monkeypatch, texts):
    import pdf_pipeline

    doc = _FakeDoc(texts)
    monkeypatch.setattr(pdf_pipeline, "_open_pages", lambda path: ("pymupdf", doc))
    pdf = tmp_path / "orden_pago.pdf"
    pdf.write_bytes(b"%PDF-1.4")
    return pdf, doc


def test_document_is_closed_when_consumer_stops_early(tmp_path, monkeypatch):
    from pdf_pipeline import iter_page_texts

    pdf, doc = _fake_pdf(tmp_path, monkeypatch, ["uno", "dos", "tres"])
    pages = iter_page_texts(pdf)
    assert next(pages) == (1, "uno")
    pages.close()
    assert doc.closed


def test_document_is_closed_when_page_dump_fails(tmp_path, monkeypatch):
    from pdf_pipeline import iter_page_texts

    pdf, doc = _fake_pdf(tmp_path, monkeypatch, ["uno", "dos"])
    # a directory in place of the dump file makes the write fail
    (tmp_path / "debug_pages" / "orden_pago_p01.txt").mkdir(parents=True)
    with pytest.raises(OSError):
        list(iter_page_texts(pdf, dump_root=tmp_path))
    assert doc.closed
