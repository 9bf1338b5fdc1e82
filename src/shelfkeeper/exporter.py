import csv
import json
from datetime import datetime
from pathlib import Path
from typing import List

from .models import LibraryEntry

CSV_HEADERS = [
    "Title", "Author", "Pages", "Shelf", "Rating", "Spice Rating",
    "Form", "Tags", "Note", "Date Added",
]


class Exporter:
    def __init__(self, output_dir: str = "outputs"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def to_json(self, books: List[LibraryEntry], filename: str = "library.json"):
        path = self.output_dir / filename
        data = [book.model_dump(mode="json") for book in books]
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        return path

    def to_csv(self, books: List[LibraryEntry]):
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = self.output_dir / f"shelfkeeper_export_{timestamp}.csv"

        rows = []
        for b in books:
            rows.append({
                "Title": b.title or "",
                "Author": b.author or "",
                "Pages": b.pages if b.pages is not None else "",
                "Shelf": b.shelf or "",
                "Rating": b.rating if b.rating is not None else "",
                "Spice Rating": b.spice_rating if b.spice_rating is not None else "",
                "Form": b.form or "",
                "Tags": "; ".join(b.tags),
                "Note": b.note or "",
                "Date Added": b.inserted_at.date().isoformat() if b.inserted_at else "",
            })

        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_HEADERS)
            writer.writeheader()
            writer.writerows(rows)
        return path
