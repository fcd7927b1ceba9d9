"""Generate sample load, line item, stop and ERP files for the upload screens."""
import csv
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path

from openpyxl import Workbook


SHIP_FROM_LOCATIONS = ["WSI", "ATL", "BHM", "MEM"]
CARRIERS = ["Jordan", "Jordan", "Willbanks", "Other"]
STATUSES = ["Open", "Open", "Ready", "Assigned", "Shipped"]
DRIVERS = ["Pat Lee", "Sam Ortiz", "Dana Cole", "Chris Park"]

PRODUCTS = [
    "Hot rolled coil A36",
    "Cold rolled sheet 16ga",
    "Galvanized coil G90",
    "Plate 1/2in A572",
    "Rebar #5 grade 60",
]

CUSTOMERS = [
    ("Acme Fabrication", "1200 Industrial Pkwy, Birmingham, AL"),
    ("Delta Structural", "45 River Rd, Memphis, TN"),
    ("Peachtree Steel", "800 Foundry St, Atlanta, GA"),
    ("Gulf Coast Tanks", "9 Harbor Dr, Mobile, AL"),
]


def _load_rows(count: int):
    now = datetime.now(timezone.utc)
    rows = []
    for index in range(1, count + 1):
        status = random.choice(STATUSES)
        rows.append({
            "LOAD_ID": f"WB{240000 + index}",
            "SHIP_FROM_LOC": random.choice(SHIP_FROM_LOCATIONS),
            "STATUS": status,
            "CARRIER_CODE": random.choice(CARRIERS),
            "TRAILER_NO": str(random.randint(1000, 9999)) if status != "Open" else "",
            "DRIVER_NAME": random.choice(DRIVERS) if status in {"Assigned", "Shipped"} else "",
            "SHIP_REQ_DATE": (now + timedelta(days=random.randint(0, 10))).date().isoformat(),
            "ETA": "",
        })
    return rows


def _detail_rows(loads):
    rows = []
    for load in loads:
        for line in range(1, random.randint(2, 5)):
            status = "Open" if load["STATUS"] == "Open" else "Loaded"
            qty = random.randint(1, 12)
            rows.append({
                "LOAD_ID": load["LOAD_ID"],
                "Line": line,
                "ItemDesc": random.choice(PRODUCTS),
                "QtyOrdered": qty,
                "QtyShipped": qty if status == "Loaded" else "",
                "StatusCode": status,
                "MarkoffReason": "",
                "HeatNumber": f"H{random.randint(100000, 999999)}",
            })
    return rows


def _stop_rows(loads):
    rows = []
    for load in loads:
        for seq_no, (name, address) in enumerate(random.sample(CUSTOMERS, random.randint(1, 3)), start=1):
            rows.append({
                "LOAD_ID": load["LOAD_ID"],
                "SeqNo": seq_no,
                "Cust Name": name,
                "Address": address,
                "Miles": round(random.uniform(20, 400), 1),
                "Weight": random.randint(8000, 44000),
            })
    return rows


def _write_csv(path: Path, rows) -> Path:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
    return path


def _write_erp_sheet(path: Path, loads) -> Path:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "ERP Loads"
    columns = ["LOAD_ID", "SHIP_FROM_LOC", "STATUS", "CARRIER_CODE", "SHIP_REQ_DATE"]
    sheet.append(columns)
    for load in loads:
        sheet.append([load[column] for column in columns])
    workbook.save(path)
    return path


def main():
    """Generate all sample upload files."""
    output_dir = Path(__file__).parent / "uploads"
    output_dir.mkdir(exist_ok=True)

    print("Generating sample load coordinator files...")
    loads = _load_rows(12)

    print("  - Loads...")
    _write_csv(output_dir / "loads.csv", loads)

    print("  - Line items...")
    _write_csv(output_dir / "details.csv", _detail_rows(loads))

    print("  - Stops...")
    _write_csv(output_dir / "stops.csv", _stop_rows(loads))

    print("  - ERP export...")
    _write_erp_sheet(output_dir / "erp_export.xlsx", loads)

    print(f"\nGenerated sample files in: {output_dir}")
    print("\nUpload them through /uploads to populate the board.")


if __name__ == "__main__":
    main()
