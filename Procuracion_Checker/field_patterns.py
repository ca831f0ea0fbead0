# field_patterns.py
from __future__ import annotations

import re
from typing import Optional, Tuple

YEAR_RANGE = (1990, 2025)
CASE_MAX_LEN = 30
CASE_KEEP_LEN = 25
CANON_EXP = "EXP-"
CANON_EJF = "EJF-"

# ---------- names ----------
NAME_RX = re.compile(r'autos\s+"(.*?)"')
NAME_SKIP = {"ut-supra", "ut -supra"}

# ---------- case reference ----------
CASE_VOCAB = [
    (re.compile(r"(?i)expediente"), CANON_EXP),
    (re.compile(r"(?i)Expte\."),    CANON_EXP),
]
# order is priority: first pattern with a hit wins
CASE_PATTERNS = [
    (re.compile(r"[Ee][Xx][Pp]\-[^,]*,"), "exp_dash"),
    (re.compile(r"[Ee][Xx][Pp]\.[^,]*,"), "exp_dot"),
    (re.compile(r"[Ee][Xx][Pp] [^,]*,"),  "exp_space"),
    (re.compile(r"\d{4,6}-\d{4}", re.A),   "bare_dash"),
    (re.compile(r"\d{4,6}/\d{4}", re.A),   "bare_slash"),
    (re.compile(r"[Ee][Jj][Ff]\-[^,]*,"), "ejf_dash"),
]
CASE_NOISE = [
    ("EXP. Nro.", CANON_EXP),
    ("Nº", ""),
    ("N°", ""),
    ("EXP.", CANON_EXP),
    ("NRO.", ""),
]

# ---------- amounts ----------
PAREN_DOLLAR_GAP = re.compile(r"\(\s+\$")
AMOUNT_RX = re.compile(r"\(\$([^)]+)\)")

# ---------- payment ids ----------
CHEQUE_PATTERNS = [
    re.compile(r"ChequeNro(\d+)", re.A),
    re.compile(r"ChequeN°(\d+)", re.A),
]
CHEQUE_DIGITS = 8
ITB_RX = re.compile(r"ITBNº:(\d+)", re.A)
INTERNO_RX = re.compile(r"INTERNO:(\d+)", re.A)
INTERNO_SUFFIX = 4
MEP_MARKER = "M.E.P."


def page_sentinel(page_ordinal: int) -> str:
    """
    Placeholder for a field that could not be found on a page.
    It is the 1-based page ordinal so a reviewer can trace a gap back to its page.
    """
    return str(page_ordinal + 1)


def extract_name(text: str, page_ordinal: int) -> str:
    """Text between double quotes right after 'autos' (skipping 'ut-supra' references)."""
    for m in NAME_RX.finditer(text):
        name = m.group(1)
        if name in NAME_SKIP or not name.strip():
            continue
        return name
    return page_sentinel(page_ordinal)


def _first_case_match(text: str) -> Tuple[Optional[str], str]:
    for rx, tag in CASE_PATTERNS:
        m = rx.search(text)
        if m:
            return m.group(0).upper().replace(" ", ""), tag
    return None, ""


def _trim_after_last_digit(s: str) -> str:
    i = len(s) - 1
    while i >= 0 and s[i] not in "0123456789":
        i -= 1
    return s[: i + 1] if i >= 0 else s


def _split_year(case: str) -> Tuple[str, str]:
    if len(case) < 4:
        return case, " "
    tail = case[-4:]
    if not (tail.isascii() and tail.isdigit()):
        return case, " "
    year = int(tail)
    if not (YEAR_RANGE[0] <= year <= YEAR_RANGE[1]):
        return case, " "
    if len(case) >= 5:
        case = case[:-5]
    return case, str(year)


def extract_case_and_year(text: str, page_ordinal: int) -> Tuple[str, str]:
    """
    Case/docket reference and its year.

    The vocabulary is normalised to the canonical 'EXP-' token, then the
    patterns in CASE_PATTERNS are tried in order and the first hit is kept
    (no longest-match preference). The hit is cut down to the reference,
    a trailing year in YEAR_RANGE is split off, and literal noise tokens are
    cleaned. A miss gives (sentinel, " ").
    """
    for rx, repl in CASE_VOCAB:
        text = rx.sub(repl, text)

    case, tag = _first_case_match(text)
    if case is None:
        return page_sentinel(page_ordinal), " "

    # 'EXP 1234' carries no separator, the bare token is dropped entirely
    if tag == "exp_space":
        case = case.replace("EXP", "")

    # a missing comma lets the match run into the following sentences
    if len(case) > CASE_MAX_LEN:
        case = case[:CASE_KEEP_LEN]

    case = _trim_after_last_digit(case)
    case, year = _split_year(case)

    for noise, repl in CASE_NOISE:
        case = case.replace(noise, repl)
    if case.endswith("-"):
        case = case[:-1]

    if case.count(CANON_EXP) > 1:
        case = case.replace(CANON_EXP, "", 1)
    elif CANON_EXP not in case and CANON_EJF not in case:
        case = CANON_EXP + case

    return case, year


def normalize_amount(raw: str) -> str:
    """
    Disambiguate thousands/decimal separators of a ledger amount.

      1.234.567.89 -> 1234567.89
      1,234.56     -> 1234.56
      1,234,567,89 -> 1234567.89
      1.234.567    -> 1234567
      1234,56      -> 1234.56   (dots dropped, commas turned into dots)
    """
    amt = raw.replace("$", "").replace(" ", "")
    if amt.endswith(".-"):
        amt = amt[:-2]
    elif amt.endswith("."):
        amt = amt[:-1]

    if len(amt) < 3:
        return amt

    third_last = amt[-3]
    dots, commas = amt.count("."), amt.count(",")

    if third_last == "." and dots > 1:
        return amt[:-3].replace(".", "") + "." + amt[-2:]
    if third_last == ".":
        return amt.replace(",", "")
    if third_last == "," and commas > 1:
        return amt[:-3].replace(",", "") + "." + amt[-2:]
    return amt.replace(".", "").replace(",", ".")


def extract_amount(text: str, page_ordinal: int) -> str:
    """First parenthesised dollar amount '($ ...)' on the page."""
    text = PAREN_DOLLAR_GAP.sub("($", text)
    m = AMOUNT_RX.search(text)
    if not m:
        return page_sentinel(page_ordinal)
    amt = normalize_amount(m.group(1))
    return amt or page_sentinel(page_ordinal)


def extract_payment_id(text: str, page_ordinal: int) -> str:
    """
    Check / transfer identifier.

    Cheque numbers keep their first 8 digits, internal transfer numbers
    lose a 4-digit suffix; digits are kept as text so leading zeros survive.
    """
    compact = text.replace(".", "").replace("-", "").replace(" ", "")

    for rx in CHEQUE_PATTERNS:
        m = rx.search(compact)
        if m and len(m.group(1)) >= CHEQUE_DIGITS:
            return f"CH {m.group(1)[:CHEQUE_DIGITS]}"

    m = ITB_RX.search(compact)
    if m:
        return f"ITB {m.group(1)}"

    m = INTERNO_RX.search(compact)
    if m and len(m.group(1)) > INTERNO_SUFFIX:
        number = m.group(1)[:-INTERNO_SUFFIX]
        prefix = "MEP" if MEP_MARKER in text else "ITB"
        return f"{prefix} {number}"

    return page_sentinel(page_ordinal)
