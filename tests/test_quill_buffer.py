from quill_buffer import TextBuffer


class TestInsert:
    def test_insert_advances_cursor(self):
        buffer = TextBuffer("ac")
        buffer.cursor_column = 1

        buffer.insert("b")

        assert buffer.text() == "abc"
        assert buffer.cursor == (0, 2)
        assert buffer.modified

    def test_insert_newline_splits_line(self):
        buffer = TextBuffer("fn main() {}")
        buffer.cursor_column = 11

        buffer.insert("\n")

        assert buffer.lines == ["fn main() {", "}"]
        assert buffer.cursor == (1, 0)

    def test_insert_multiline_text(self):
        buffer = TextBuffer("x;\ny;")
        buffer.cursor_line = 1

        buffer.insert("a\nbb\nc")

        assert buffer.lines == ["x;", "a", "bb", "cy;"]
        assert buffer.cursor == (3, 1)


class TestDelete:
    def test_delete_within_line(self):
        buffer = TextBuffer("hello")
        buffer.cursor_column = 5

        buffer.delete_before(3)

        assert buffer.text() == "he"
        assert buffer.cursor == (0, 2)

    def test_delete_joins_lines(self):
        buffer = TextBuffer("ab\ncd")
        buffer.cursor_line = 1

        buffer.delete_before(1)

        assert buffer.lines == ["abcd"]
        assert buffer.cursor == (0, 2)

    def test_delete_at_start_of_buffer(self):
        buffer = TextBuffer("ab")

        buffer.delete_before(5)

        assert buffer.text() == "ab"
        assert not buffer.modified


class TestMovement:
    def test_vertical_moves_clamp(self):
        buffer = TextBuffer("long line\nx\nanother long line")
        buffer.cursor_column = 8

        buffer.move_down()
        assert buffer.cursor == (1, 1)

        buffer.move_down(10)
        assert buffer.cursor == (2, 1)

        buffer.move_up(10)
        assert buffer.cursor == (0, 1)

    def test_horizontal_moves_wrap_lines(self):
        buffer = TextBuffer("ab\ncd")
        buffer.cursor_column = 2

        buffer.move_right()
        assert buffer.cursor == (1, 0)

        buffer.move_left()
        assert buffer.cursor == (0, 2)

    def test_jump_to_line(self):
        buffer = TextBuffer("a\nb\nc")

        buffer.jump_to_line(2)
        assert buffer.cursor == (2, 0)

        buffer.jump_to_line(10)
        assert buffer.cursor == (2, 0)

    def test_text_before_cursor(self):
        buffer = TextBuffer("let x = pri;")
        buffer.cursor_column = 11

        assert buffer.text_before_cursor() == "let x = pri"


class TestFile:
    def test_missing_file_is_empty(self, tmp_path):
        buffer = TextBuffer.from_file(tmp_path / "new.rs")

        assert buffer.text() == ""
        assert buffer.name == "new.rs"

    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "main.rs"
        path.write_text("fn main() {}\n", encoding="utf-8")

        buffer = TextBuffer.from_file(path)
        buffer.insert("// é\n")

        assert buffer.display_name() == "main.rs*"

        buffer.save()

        assert path.read_text(encoding="utf-8") == "// é\nfn main() {}\n"
        assert buffer.display_name() == "main.rs"
