from pathlib import Path
from typing import List, Optional


class TextBuffer:
    """
    Lines of text and a cursor. Positions are 0-based (line, column) in characters.
    """

    def __init__(self, text: str = "", file_path: Optional[Path] = None):
        self.lines: List[str] = text.split("\n")
        self.cursor_line = 0
        self.cursor_column = 0
        self.file_path = file_path
        self.modified = False

    @classmethod
    def from_file(cls, path: Path) -> "TextBuffer":
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            text = ""

        return cls(text, path)

    def save(self):
        if self.file_path is not None:
            self.file_path.write_text(self.text(), encoding="utf-8")
            self.modified = False

    @property
    def name(self) -> str:
        return self.file_path.name if self.file_path else "[scratch]"

    def display_name(self) -> str:
        return f"{self.name}*" if self.modified else self.name

    @property
    def cursor(self):
        return self.cursor_line, self.cursor_column

    def text(self) -> str:
        return "\n".join(self.lines)

    def line_count(self) -> int:
        return len(self.lines)

    def current_line(self) -> str:
        return self.lines[self.cursor_line]

    def text_before_cursor(self) -> str:
        return self.current_line()[: self.cursor_column]

    # -- MOVEMENT

    def _clamp_column(self):
        self.cursor_column = min(self.cursor_column, len(self.current_line()))

    def move_left(self):
        if self.cursor_column > 0:
            self.cursor_column -= 1
        elif self.cursor_line > 0:
            self.cursor_line -= 1
            self.cursor_column = len(self.current_line())

    def move_right(self):
        if self.cursor_column < len(self.current_line()):
            self.cursor_column += 1
        elif self.cursor_line + 1 < len(self.lines):
            self.cursor_line += 1
            self.cursor_column = 0

    def move_up(self, n: int = 1):
        self.cursor_line = max(self.cursor_line - n, 0)
        self._clamp_column()

    def move_down(self, n: int = 1):
        self.cursor_line = min(self.cursor_line + n, len(self.lines) - 1)
        self._clamp_column()

    def jump_to_line(self, line: int):
        if 0 <= line < len(self.lines):
            self.cursor_line = line
            self._clamp_column()

    # -- EDITING

    def insert(self, text: str):
        """
        Insert `text` at the cursor; the cursor ends up after it.
        """
        row = self.cursor_line

        line = self.lines[row]

        head, tail = line[: self.cursor_column], line[self.cursor_column :]

        new_lines = (head + text).split("\n")

        self.cursor_line = row + len(new_lines) - 1
        self.cursor_column = len(new_lines[-1])

        new_lines[-1] += tail

        self.lines[row : row + 1] = new_lines

        self.modified = True

    def delete_before(self, n: int):
        """
        Delete `n` characters before the cursor, joining lines at line starts.
        """
        for _ in range(n):
            if self.cursor_column > 0:
                line = self.current_line()

                self.lines[self.cursor_line] = (
                    line[: self.cursor_column - 1] + line[self.cursor_column :]
                )

                self.cursor_column -= 1
            elif self.cursor_line > 0:
                previous = self.lines[self.cursor_line - 1]

                self.lines[self.cursor_line - 1] = previous + self.current_line()

                del self.lines[self.cursor_line]

                self.cursor_line -= 1
                self.cursor_column = len(previous)
            else:
                break

            self.modified = True
