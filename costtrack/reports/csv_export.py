# costtrack/reports/csv_export.py

import csv
import io
import re

UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')


def safe_filename(name: str) -> str:
    return UNSAFE_FILENAME_CHARS.sub('_', name)


def _write_table(writer, columns, rows, totals=None):
    keys = [c['key'] for c in columns]
    writer.writerow([c['label'] for c in columns])
    for row in rows:
        writer.writerow(['' if row.get(k) is None else row.get(k) for k in keys])
    if totals:
        writer.writerow(['' if totals.get(k) is None else totals.get(k) for k in keys])


def render_csv(payload: dict):
    """
    Render a report payload (``ReportPayload.to_dict()``) as CSV.
    Returns (bytes, filename). The totals row follows the data rows and each
    section is written below the main table after a blank line.
    """
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([payload['title']])
    writer.writerow(['Generated', payload['generated_at']])
    for key, value in payload['meta'].items():
        writer.writerow([key, '' if value is None else value])
    writer.writerow([])

    _write_table(writer, payload['columns'], payload['rows'], payload['totals'])

    for section in payload['sections']:
        writer.writerow([])
        writer.writerow([section['title']])
        _write_table(writer, section['columns'], section['rows'])

    filename = safe_filename(f"{payload['title']}.csv")
    return output.getvalue().encode('utf-8'), filename
