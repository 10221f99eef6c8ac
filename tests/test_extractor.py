"""
Tests for detail-page and listing-card field extraction.
"""

import json

from extractor import (
    UNKNOWN_COMPANY,
    UNKNOWN_LOCATION,
    UNKNOWN_SALARY,
    UNKNOWN_TITLE,
    extract_fields,
    parse_preview_text,
)

from fakes import detail_page


class TestExtractFields:
    def test_selector_based_page(self):
        fields = extract_fields(detail_page("1", title="Backend Developer"), "https://x.test/th/job/1")

        assert fields.title == "Backend Developer"
        assert fields.company == "Acme Co., Ltd."
        assert fields.location == "Bangkok"
        assert fields.salary == "30,000 - 40,000 บาท"
        assert "• Python" in fields.description
        assert fields.job_url == "https://x.test/th/job/1"

    def test_json_ld_posting(self):
        posting = {
            "@context": "https://schema.org",
            "@type": "JobPosting",
            "title": "Data Analyst",
            "datePosted": "2024-05-01",
            "hiringOrganization": {"@type": "Organization", "name": "Globex", "logo": "https://x.test/logo.png"},
            "jobLocation": {"@type": "Place", "address": {"addressLocality": "Chiang Mai", "addressCountry": "TH"}},
            "baseSalary": {"currency": "USD", "value": {"minValue": 50000, "maxValue": 70000, "unitText": "YEAR"}},
            "description": "<p>Analyse data.</p>",
        }
        html = f'<html><head><script type="application/ld+json">{json.dumps(posting)}</script></head><body></body></html>'

        fields = extract_fields(html, "https://x.test/th/job/2")

        assert fields.title == "Data Analyst"
        assert fields.company == "Globex"
        assert fields.company_logo == "https://x.test/logo.png"
        assert fields.location == "Chiang Mai, TH"
        assert fields.salary == "$50,000 - $70,000 per year"
        assert fields.posted_date == "2024-05-01"
        assert fields.description == "Analyse data."

    def test_labelled_sections(self):
        html = """
        <html><body>
            <h1>Accountant</h1>
            <p>สถานที่ปฏิบัติงาน</p><p>เขตบางรัก กรุงเทพมหานคร</p>
            <p>เงินเดือน</p><p>25,000 บาท</p>
            <p>อัตรา</p><p>2</p>
            <p>สวัสดิการ</p><p>ประกันสังคม</p><p>โบนัส</p>
            <p>ติดต่อ</p><p>hr@example.com</p>
        </body></html>
        """
        fields = extract_fields(html, "https://x.test/th/job/3")

        assert fields.title == "Accountant"
        assert fields.location == "เขตบางรัก กรุงเทพมหานคร"
        assert fields.salary == "25,000 บาท"
        assert fields.positions == "2"
        assert fields.benefits == "ประกันสังคม\nโบนัส"
        assert fields.contact == "hr@example.com"

    def test_empty_page_gets_placeholders(self):
        fields = extract_fields("", "https://x.test/th/job/4")

        assert fields.title == UNKNOWN_TITLE
        assert fields.company == UNKNOWN_COMPANY
        assert fields.location == UNKNOWN_LOCATION
        assert fields.salary == UNKNOWN_SALARY
        assert fields.description == ""

    def test_title_from_head_when_body_has_none(self):
        html = "<html><head><title>JobThai | Sales Executive - Acme</title></head><body><p>hello</p></body></html>"
        assert extract_fields(html, "https://x.test/th/job/5").title == "Sales Executive"


class TestParsePreviewText:
    def test_thai_card(self):
        text = "พนักงานขาย\nบริษัท สยามเทรด จำกัด\nBTS อโศก\n15,000 - 20,000 บาท\n5 ม.ค. 68"
        preview = parse_preview_text(text)

        assert preview["title"] == "พนักงานขาย"
        assert preview["company"] == "บริษัท สยามเทรด จำกัด"
        assert preview["location"] == "BTS อโศก"
        assert preview["salary"] == "15,000 - 20,000 บาท"
        assert preview["posted_date"] == "5 ม.ค. 68"

    def test_english_card(self):
        preview = parse_preview_text("Python Developer\nInitech Co., Ltd.\nRemote\n$4,000 per month")

        assert preview["title"] == "Python Developer"
        assert preview["company"] == "Initech Co., Ltd."
        assert preview["location"] == "Remote"
        assert preview["salary"] == "$4,000 per month"

    def test_empty_text(self):
        assert parse_preview_text("") == {"title": "", "company": "", "location": "", "salary": "", "posted_date": ""}
