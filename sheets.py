"""
Google Sheets writer.

Each network has its own worksheet; rows are appended positionally:
[timestamp, nodeCount, spacePledged, subspace, spaceAcres, linux, windows, macos]
"""

import gspread
from google.oauth2.service_account import Credentials

from utils import parse_timestamp

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
NODE_SHEET_HEADER = ["Timestamp", "Node Name", "Last Restart"]


def _cell(value):
    # Missing fields stay blank in the sheet
    return "" if value is None else value


def build_report_row(timestamp, stats, space_pledged):
    return [
        timestamp,
        _cell(stats.node_count),
        "" if space_pledged is None else str(space_pledged),
        _cell(stats.subspace_node_count),
        _cell(stats.space_acres_node_count),
        _cell(stats.linux_node_count),
        _cell(stats.windows_node_count),
        _cell(stats.macos_node_count),
    ]


class SheetWriter:
    def __init__(self, spreadsheet):
        self.spreadsheet = spreadsheet

    @classmethod
    def from_settings(cls, settings):
        info = {
            "type": "service_account",
            "client_email": settings.client_email,
            "private_key": settings.private_key,
            "token_uri": TOKEN_URI,
        }
        creds = Credentials.from_service_account_info(info, scopes=SCOPES)
        gc = gspread.authorize(creds)
        return cls(gc.open_by_key(settings.spreadsheet_id))

    def append_row(self, range_name, row):
        ws = self.spreadsheet.worksheet(range_name)
        ws.append_row(row, value_input_option="USER_ENTERED")

    def append_rows(self, range_name, rows):
        if not rows:
            return
        ws = self.spreadsheet.worksheet(range_name)
        ws.append_rows(rows, value_input_option="USER_ENTERED")

    def last_timestamp(self, range_name):
        """Timestamp of the last written row, or None for an empty sheet."""
        ws = self.spreadsheet.worksheet(range_name)
        values = [v for v in ws.col_values(1) if v]
        for value in reversed(values):
            parsed = parse_timestamp(value)
            if parsed is not None:
                return parsed
        return None

    def ensure_worksheet(self, title, header, fallback):
        """Create `title` with a header row if needed; on failure use `fallback`."""
        try:
            self.spreadsheet.worksheet(title)
            print(f"Sheet {title} already exists")
            return title
        except gspread.exceptions.WorksheetNotFound:
            print(f"Sheet {title} does not exist, creating it...")

        try:
            ws = self.spreadsheet.add_worksheet(title=title, rows=1000, cols=len(header))
            ws.update([header], "A1", value_input_option="USER_ENTERED")
            print(f"Created new sheet: {title}")
            return title
        except gspread.exceptions.GSpreadException as e:
            print(f"Error creating new sheet ({e}), falling back to {fallback} sheet")
            return fallback
