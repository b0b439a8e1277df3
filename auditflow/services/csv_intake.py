from __future__ import annotations

from dataclasses import dataclass

from auditflow.core.errors import ValidationError


# Comma-delimited only: no quoting or embedded newlines. Rows past max_rows are dropped.
MAX_BATCH_ROWS = 50
MIN_CSV_LENGTH = 10
URL_COLUMN = "url"
EMAIL_COLUMN = "email"


@dataclass(frozen=True)
class Prospect:
    url: str
    email: str


def parse_prospects(
    csv_text: str,
    *,
    max_rows: int = MAX_BATCH_ROWS,
    min_length: int = MIN_CSV_LENGTH,
) -> list[Prospect]:
    if csv_text is None or len(csv_text) < min_length:
        raise ValidationError(
            "CSV too short",
            [
                {
                    "loc": ["csvData"],
                    "msg": f"CSV must contain at least {min_length} characters",
                    "type": "string_too_short",
                }
            ],
        )

    lines = csv_text.strip().split("\n")
    headers = [token.strip() for token in lines[0].split(",")]
    if URL_COLUMN not in headers:
        raise ValidationError(
            'Column "url" missing from CSV',
            [{"loc": ["csvData", "header"], "msg": 'Missing "url" column', "type": "missing"}],
        )

    prospects: list[Prospect] = []
    for line in lines[1 : max_rows + 1]:
        row = _row_map(headers, line)
        raw_url = row.get(URL_COLUMN, "")
        if not raw_url:
            continue
        prospects.append(
            Prospect(
                url=normalize_url(raw_url),
                email=row.get(EMAIL_COLUMN) or f"contact@{raw_url}",
            )
        )
    return prospects


def normalize_url(raw_url: str) -> str:
    # Anything not already carrying a scheme prefix is assumed to be https.
    if raw_url.startswith("http"):
        return raw_url
    return f"https://{raw_url}"


def _row_map(headers: list[str], line: str) -> dict[str, str]:
    values = [value.strip() for value in line.split(",")]
    # Short rows pad with empty strings; extra values beyond the header are ignored.
    return {
        header: values[index] if index < len(values) else ""
        for index, header in enumerate(headers)
    }
