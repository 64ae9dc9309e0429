import csv
import io

from .base import BaseSource


class CsvFileSource(BaseSource):
    """Spreadsheet import: a CSV export with Finale's column titles."""

    label = 'csv'

    def __init__(self, fileobj, encoding='utf-8-sig'):
        self.fileobj = fileobj
        self.encoding = encoding

    def load(self) -> list[dict]:
        content = self.fileobj.read()
        if isinstance(content, bytes):
            content = content.decode(self.encoding)
        return [
            {key.strip(): value for key, value in row.items() if key}
            for row in csv.DictReader(io.StringIO(content))
        ]
