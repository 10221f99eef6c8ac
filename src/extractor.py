"""
Field Extractor - Turns rendered detail/listing markup into record fields
Pure functions: no I/O, no driver access. Every field falls back to a
fixed placeholder so records are always complete.
"""

import json
import re
from typing import Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from models import RecordFields

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_COMPANY = "Unknown Company"
UNKNOWN_LOCATION = "Unknown Location"
UNKNOWN_SALARY = "Not specified"

# Fields the extractor may report as unknown, with their sentinel
PLACEHOLDERS: Dict[str, str] = {
    "title": UNKNOWN_TITLE,
    "company": UNKNOWN_COMPANY,
    "location": UNKNOWN_LOCATION,
    "salary": UNKNOWN_SALARY,
}

TITLE_SELECTORS = ['h1[class*="title"]', 'h1[class*="job"]', '.job-title', 'h1', '[class*="JobTitle"]']
COMPANY_SELECTORS = ['.company-name', 'a[href*="/company/"]', '[class*="company"]', '[class*="Company"]']
LOCATION_SELECTORS = ['.job-location', '.location', '[class*="location"]', '[class*="Location"]', '[class*="address"]']
SALARY_SELECTORS = ['.job-salary', '.salary', '[class*="salary"]', '[class*="Salary"]', '[class*="wage"]']
DATE_SELECTORS = ['.posted-date', 'time', '[class*="posted"]', '[class*="date"]', '[class*="Date"]']
DESCRIPTION_SELECTORS = ['.job-description', '#job-description', '[class*="description"]', '[class*="Description"]', '.detail-content']
REQUIREMENT_SELECTORS = ['.requirements', '[class*="requirement"]', '[class*="Requirement"]', '[class*="qualification"]', '[class*="Qualification"]']
BENEFIT_SELECTORS = ['.benefits', '[class*="benefit"]', '[class*="Benefit"]', '[class*="welfare"]', '[class*="Welfare"]']
LOGO_SELECTORS = ['.company-logo img', 'img[class*="logo"]', 'img[class*="company"]']

# Body-text section labels (English and Thai)
SECTION_LABELS = {
    "location": ("Location", "Work location", "สถานที่ปฏิบัติงาน"),
    "salary": ("Salary", "เงินเดือน"),
    "positions": ("Positions", "Openings", "อัตรา"),
    "benefits": ("Benefits", "สวัสดิการ"),
    "contact": ("Contact", "ติดต่อ"),
    "transportation": ("Transportation", "How to get there", "วิธีการเดินทาง"),
}
ALL_LABELS = {label for labels in SECTION_LABELS.values() for label in labels}

THAI_MONTHS = r"(?:ม\.ค\.|ก\.พ\.|มี\.ค\.|เม\.ย\.|พ\.ค\.|มิ\.ย\.|ก\.ค\.|ส\.ค\.|ก\.ย\.|ต\.ค\.|พ\.ย\.|ธ\.ค\.)"
DATE_PATTERN = re.compile(
    r"(\d{1,2}\s+" + THAI_MONTHS + r"\s*\d{2}"
    r"|\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}\s+(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{2,4})"
)
SALARY_PATTERNS = [
    re.compile(r"(\d{1,3}(?:,\d{3})*\s*-\s*\d{1,3}(?:,\d{3})*\s*บาท)"),
    re.compile(r"(\d{1,3}(?:,\d{3})*\s*บาท(?:\s*(?:ขึ้นไป|/เดือน|/วัน))?)"),
    re.compile(
        r"([$£€]\s?\d[\d,]*(?:\.\d+)?(?:\s*-\s*[$£€]?\s?\d[\d,]*(?:\.\d+)?)?"
        r"(?:\s*(?:an?|per)\s*(?:hour|year|month|week|day))?)",
        re.IGNORECASE,
    ),
    re.compile(r"(ตามประสบการณ์|ตามตกลง|ตามโครงสร้าง(?:บริษัท)?|Negotiable)", re.IGNORECASE),
]
COMPANY_PATTERN = re.compile(
    r"((?:บริษัท\s+\S+(?:\s+\S+)*?\s*(?:จำกัด\s*\(มหาชน\)|จำกัด|มหาชน))"
    r"|(?:[A-Z][\w&.\-]*(?:[ \t]+[A-Z][\w&.\-]*)*[ \t]+(?:Co\.,?\s*Ltd\.?|Ltd\.?|Inc\.?|LLC|PLC|Corp\.?)))"
)
LOCATION_PATTERNS = [
    re.compile(r"((?:BTS|MRT|ARL)\s+\S+)"),
    re.compile(r"(เขต\S+\s*(?:กรุงเทพ(?:มหานคร)?)?)"),
    re.compile(r"(อ\.\s*\S+\s*จ\.\s*\S+)"),
    re.compile(r"(จ\.\s*\S+)"),
    re.compile(r"(กรุงเทพมหานคร|หลายจังหวัด)"),
    re.compile(r"\b(Remote)\b", re.IGNORECASE),
]
TAG_NOISE = re.compile(r"Hybrid\s*Work|Work\s*from\s*Home|สัมภาษณ์(?:งาน)?(?:ออนไลน์)?|รับสมัครด่วน", re.IGNORECASE)


def _clean(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def _first_text(soup: BeautifulSoup, selectors: Iterable[str]) -> str:
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = _clean(element.get_text(" ", strip=True))
        if text:
            return text
    return ""


def _long_text(soup: BeautifulSoup, selectors: Iterable[str]) -> str:
    """Section text with line breaks and bullet points kept."""
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        for br in element.find_all("br"):
            br.replace_with("\n")
        for li in element.find_all("li"):
            li.insert(0, "• ")
            li.append("\n")
        lines = [line.strip() for line in element.get_text().splitlines()]
        text = "\n".join(line for line in lines if line)
        if text:
            return text
    return ""


def _title_from_head(soup: BeautifulSoup) -> str:
    meta = soup.find("meta", attrs={"property": "og:title"})
    raw = meta.get("content") if meta else None
    if not raw and soup.title:
        raw = soup.title.get_text(strip=True)
    raw = _clean(raw)
    if not raw:
        return ""
    # "Site | Position - Brand" or "Position - Brand"
    if "|" in raw:
        raw = raw.split("|")[-1]
    return raw.split(" - ")[0].strip()


def _format_salary(currency: Optional[str], min_value, max_value, unit: Optional[str]) -> str:
    if min_value is None and max_value is None:
        return ""
    symbol = "$" if currency == "USD" else (f"{currency} " if currency else "")
    parts = [f"{symbol}{int(float(v)):,}" for v in (min_value, max_value) if v is not None]
    salary = " - ".join(parts)
    if unit:
        salary = f"{salary} per {unit.strip().lower()}"
    return salary


def _json_ld_posting(soup: BeautifulSoup) -> Dict[str, str]:
    """Pull fields from a schema.org JobPosting block if the page has one."""
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw:
            continue
        try:
            data = json.loads(raw)
        except ValueError:
            continue
        items = data if isinstance(data, list) else data.get("@graph", [data]) if isinstance(data, dict) else []
        for item in items:
            if not isinstance(item, dict) or item.get("@type") != "JobPosting":
                continue
            fields: Dict[str, str] = {}
            fields["title"] = _clean(item.get("title"))
            org = item.get("hiringOrganization")
            if isinstance(org, dict):
                fields["company"] = _clean(org.get("name"))
                logo = org.get("logo")
                if isinstance(logo, str):
                    fields["company_logo"] = logo
            location = item.get("jobLocation")
            if isinstance(location, list) and location:
                location = location[0]
            if isinstance(location, dict):
                address = location.get("address")
                if isinstance(address, dict):
                    parts = [address.get(k) for k in ("addressLocality", "addressRegion", "addressCountry")]
                    fields["location"] = ", ".join(_clean(p) for p in parts if isinstance(p, str) and p.strip())
            base_salary = item.get("baseSalary")
            if isinstance(base_salary, dict):
                value = base_salary.get("value") or {}
                if isinstance(value, dict):
                    fields["salary"] = _format_salary(
                        base_salary.get("currency"), value.get("minValue"), value.get("maxValue"), value.get("unitText")
                    )
            if item.get("datePosted"):
                fields["posted_date"] = _clean(str(item["datePosted"]))
            if item.get("description"):
                fields["description"] = BeautifulSoup(str(item["description"]), "html.parser").get_text("\n", strip=True)
            return {k: v for k, v in fields.items() if v}
    return {}


def _body_lines(soup: BeautifulSoup) -> List[str]:
    body = soup.body or soup
    return [line.strip() for line in body.get_text("\n").splitlines() if line.strip()]


def _section_after(lines: List[str], labels: Iterable[str], multi_line: bool = False) -> str:
    """Value following a label line, up to the next known label."""
    labels = set(labels)
    for i, line in enumerate(lines):
        if line not in labels:
            continue
        if not multi_line:
            return lines[i + 1] if i + 1 < len(lines) else ""
        collected = []
        for follow in lines[i + 1:]:
            if follow in ALL_LABELS:
                break
            collected.append(follow)
        return "\n".join(collected)
    return ""


def _company_history(lines: List[str]) -> str:
    start = None
    for i, line in enumerate(lines):
        if re.search(r"Co\.,?\s*Ltd\.?", line, re.IGNORECASE):
            start = i
            break
    if start is None:
        return ""
    collected = []
    for line in lines[start:]:
        if line in ALL_LABELS:
            break
        collected.append(line)
    return "\n".join(collected)


def extract_fields(raw_content: str, source_url: str) -> RecordFields:
    """Extract a detail page into RecordFields, never leaving a field undefined."""
    soup = BeautifulSoup(raw_content or "", "html.parser")
    ld = _json_ld_posting(soup)
    lines = _body_lines(soup)

    title = ld.get("title") or _first_text(soup, TITLE_SELECTORS) or _title_from_head(soup)
    company = ld.get("company") or _first_text(soup, COMPANY_SELECTORS)
    if not company:
        match = COMPANY_PATTERN.search(" ".join(lines))
        company = match.group(1).strip() if match else ""
    location = (
        ld.get("location")
        or _section_after(lines, SECTION_LABELS["location"])
        or _first_text(soup, LOCATION_SELECTORS)
    )
    salary = ld.get("salary") or _section_after(lines, SECTION_LABELS["salary"]) or _first_text(soup, SALARY_SELECTORS)

    posted_date = ld.get("posted_date") or ""
    if not posted_date:
        for line in lines:
            match = DATE_PATTERN.fullmatch(line)
            if match:
                posted_date = match.group(1)
                break
    if not posted_date:
        posted_date = _first_text(soup, DATE_SELECTORS)

    logo = ld.get("company_logo", "")
    if not logo:
        for selector in LOGO_SELECTORS:
            img = soup.select_one(selector)
            if img is not None and img.get("src"):
                logo = img["src"]
                break

    benefits = _long_text(soup, BENEFIT_SELECTORS) or _section_after(lines, SECTION_LABELS["benefits"], multi_line=True)
    transportation = _section_after(lines, SECTION_LABELS["transportation"])

    return RecordFields(
        title=title or UNKNOWN_TITLE,
        company=company or UNKNOWN_COMPANY,
        company_logo=logo,
        location=location or UNKNOWN_LOCATION,
        salary=salary or UNKNOWN_SALARY,
        positions=_section_after(lines, SECTION_LABELS["positions"]),
        description=ld.get("description") or _long_text(soup, DESCRIPTION_SELECTORS),
        requirements=_long_text(soup, REQUIREMENT_SELECTORS),
        benefits=benefits,
        company_history=_company_history(lines),
        contact=_section_after(lines, SECTION_LABELS["contact"], multi_line=True),
        transportation=transportation,
        job_url=source_url,
        posted_date=posted_date,
    )


def parse_preview_text(text: str) -> Dict[str, str]:
    """Best-effort title/company/location/salary/posted_date from listing link text."""
    result = {"title": "", "company": "", "location": "", "salary": "", "posted_date": ""}
    if not text:
        return result

    remaining = text
    date_match = DATE_PATTERN.search(remaining)
    if date_match:
        result["posted_date"] = date_match.group(1)
        remaining = remaining.replace(date_match.group(0), " ", 1)

    for pattern in SALARY_PATTERNS:
        match = pattern.search(remaining)
        if match:
            result["salary"] = match.group(1).strip()
            remaining = remaining.replace(match.group(0), " ", 1)
            break

    for pattern in LOCATION_PATTERNS:
        match = pattern.search(remaining)
        if match:
            result["location"] = match.group(1).strip()
            break

    company_match = COMPANY_PATTERN.search(remaining)
    if company_match:
        result["company"] = company_match.group(1).strip()
        remaining = remaining.replace(result["company"], " ")

    remaining = TAG_NOISE.sub(" ", remaining)
    first_line = next((line.strip() for line in remaining.splitlines() if line.strip()), "")
    if result["location"]:
        first_line = first_line.replace(result["location"], "")
    result["title"] = _clean(first_line.split("บริษัท")[0])[:100]
    return result
