import csv
import json

from shelfkeeper.exporter import CSV_HEADERS, Exporter
from shelfkeeper.models import LibraryEntry


def sample_books():
    return [
        LibraryEntry(
            id="e1", book_id="b1", title="Dune", author="Frank Herbert", pages=412,
            shelf="read", rating=5, spice_rating=None, form="print", note="sand",
            tags=["sci-fi", "classic"], inserted_at="2024-03-01T09:30:00+00:00",
        ),
        LibraryEntry(id="e2", title="Emma", author="Jane Austen", shelf="to-read"),
    ]


def test_json_export(tmp_path):
    path = Exporter(tmp_path / "out").to_json(sample_books())
    data = json.loads(path.read_text(encoding="utf-8"))
    assert [d["title"] for d in data] == ["Dune", "Emma"]
    assert data[0]["tags"] == ["sci-fi", "classic"]
    assert data[1]["tags"] == []


def test_csv_export(tmp_path):
    path = Exporter(tmp_path).to_csv(sample_books())
    assert path.name.startswith("shelfkeeper_export_")
    with open(path, encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        assert reader.fieldnames == CSV_HEADERS
        rows = list(reader)
    assert rows[0]["Tags"] == "sci-fi; classic"
    assert rows[0]["Date Added"] == "2024-03-01"
    assert rows[0]["Spice Rating"] == ""
    assert rows[1]["Rating"] == ""
